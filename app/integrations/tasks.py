"""
Background tasks for integration synchronization.

Architecture:
- sync_provider_task: Sync one provider for a user (queued after the OAuth callback
  and by `background: true` manual syncs)
- sync_all_providers_task: Sync every active integration of a user
- sync_due_integrations_task: Scheduled scan (Celery beat, every 5 minutes)
- Task wrapper: runs the async service code with its own AsyncSession

Scheduling:
    The beat entry `sync-due-integrations` lives in app/core/celery_app.py.
"""
import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.core.celery_app import celery_app
from app.core.database import get_async_session_factory
from app.core.logging_config import log_error, log_info
from app.integrations.service import sync_all_integrations, sync_due_integrations, sync_integration
from app.integrations.types import SyncOptions


async def _run_with_session(task_func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    async with get_async_session_factory()() as session:
        return await task_func(session, *args, **kwargs)


def _run_async(task_func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
    log_info(f"Starting background task: {task_func.__name__}")
    try:
        result = asyncio.run(_run_with_session(task_func, *args, **kwargs))
        log_info(f"Completed background task: {task_func.__name__}")
        return result
    except Exception as e:
        log_error(e, task_name=task_func.__name__)
        raise


@celery_app.task(name="app.integrations.tasks.sync_provider_task")
def sync_provider_task(user_id: str, provider: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Sync one provider for one user.

    Args:
        user_id: User UUID as a string
        provider: Provider id
        options: Serialized SyncOptions

    Returns:
        The SyncResult as a JSON-compatible dict
    """
    sync_options = SyncOptions.model_validate(options or {})
    result = _run_async(sync_integration, uuid.UUID(user_id), provider, sync_options)
    return result.model_dump(mode="json")


@celery_app.task(name="app.integrations.tasks.sync_all_providers_task")
def sync_all_providers_task(user_id: str) -> List[Dict[str, Any]]:
    results = _run_async(sync_all_integrations, uuid.UUID(user_id))
    return [result.model_dump(mode="json") for result in results]


@celery_app.task(name="app.integrations.tasks.sync_due_integrations_task")
def sync_due_integrations_task(limit: Optional[int] = None) -> Dict[str, int]:
    return _run_async(sync_due_integrations, limit)
