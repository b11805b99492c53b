"""
Health check endpoint.
"""
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlmodel import Session, select, text

from app.core.config import settings
from app.core.database import get_session
from app.core.logging_config import log_error
from app.core.time_utils import serialize_datetime, utc_now
from app.integrations.registry import get_registry
from app.models.integration import IntegrationSyncState

router = APIRouter(tags=["health"])


def _sync_status_counts(session: Session) -> Dict[str, int]:
    rows = session.exec(
        select(IntegrationSyncState.status, func.count()).group_by(IntegrationSyncState.status)
    ).all()
    return {getattr(sync_status, "value", sync_status): count for sync_status, count in rows}


@router.get(
    "/health",
    response_model=Dict[str, Any],
    responses={
        500: {"description": "Internal server error"},
    }
)
async def health_check(session: Annotated[Session, Depends(get_session)]):
    """
    Database status, registered providers and sync states per status.

    Reports `degraded` instead of failing when the database is unreachable,
    and when any integration is paused after repeated failures.
    """
    try:
        sync_states: Dict[str, int] = {}
        try:
            session.exec(text("SELECT 1")).first()
            db_status = "connected"
            sync_states = _sync_status_counts(session)
        except Exception as e:
            db_status = f"disconnected: {e}"

        healthy = db_status == "connected" and not sync_states.get("paused")
        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": serialize_datetime(utc_now()),
            "service": settings.app_name,
            "version": settings.app_version,
            "database": db_status,
            "providers": len(get_registry().all_instances()),
            "sync_states": sync_states,
        }
    except Exception as e:
        log_error(e, request_id=None)
        raise HTTPException(status_code=500, detail="Health check failed")
