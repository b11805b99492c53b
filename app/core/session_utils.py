"""
Helpers that let service code run on both sync `Session` (API requests)
and `AsyncSession` (Celery workers) without duplicating every function.
"""
from inspect import isawaitable

from sqlmodel import Session
from sqlmodel.ext.asyncio.session import AsyncSession

SessionLike = Session | AsyncSession


async def _exec(session: SessionLike, statement):
    result = session.exec(statement)
    if isawaitable(result):
        return await result
    return result


async def _get(session: SessionLike, model, ident):
    result = session.get(model, ident)
    if isawaitable(result):
        return await result
    return result


async def _commit(session: SessionLike) -> None:
    result = session.commit()
    if isawaitable(result):
        await result


async def _flush(session: SessionLike) -> None:
    result = session.flush()
    if isawaitable(result):
        await result


async def _refresh(session: SessionLike, instance) -> None:
    result = session.refresh(instance)
    if isawaitable(result):
        await result


async def _rollback(session: SessionLike) -> None:
    result = session.rollback()
    if isawaitable(result):
        await result


async def _delete(session: SessionLike, instance) -> None:
    result = session.delete(instance)
    if isawaitable(result):
        await result


def dialect_name(session: SessionLike) -> str:
    """Name of the SQL dialect the session is bound to ("sqlite", "postgresql", ...)."""
    return session.get_bind().dialect.name


async def _execute(session: SessionLike, statement):
    """Run a Core DML statement (UPDATE / INSERT) and return the raw result."""
    result = session.execute(statement)
    if isawaitable(result):
        return await result
    return result
