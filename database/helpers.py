"""
Database helper functions — the per-user record store.

Every statement built here is scoped to the owning user: the user filter is
added by ``_owned`` and cannot be omitted by callers.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import Select, delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import ProToolsConfig

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A data-store operation failed. The message is for logs, not clients."""


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


def parse_record_id(value: Any) -> Optional[uuid.UUID]:
    """Client-supplied record id as a UUID, or None when it is not one."""
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError):
        return None


def _owned(model, user_id: str | uuid.UUID, filters: Dict[str, Any]) -> list:
    """
    WHERE clauses for the user's rows matching ``filters``.

    Every filter is applied; a ``None`` value raises ``ValueError``.
    """
    clauses = [model.user_id == _to_uuid(user_id)]
    for column, value in filters.items():
        if value is None:
            raise ValueError(f"{model.__tablename__}.{column} filter is None")
        clauses.append(getattr(model, column) == value)
    return clauses


# ── Statement builders ─────────────────────────────────────────────────


def latest_record_stmt(model, user_id: str, **filters: Any) -> Select:
    """Most recently updated matching row (ties broken by creation time)."""
    return (
        select(model)
        .where(*_owned(model, user_id, filters))
        .order_by(
            model.updated_at.desc().nulls_last(),
            model.created_at.desc().nulls_last(),
        )
        .limit(1)
    )


def delete_stmt(model, user_id: str, record_id: Optional[uuid.UUID] = None, **filters: Any):
    clauses = _owned(model, user_id, filters)
    if record_id is not None:
        clauses.append(model.id == record_id)
    return delete(model).where(*clauses)


def update_stmt(
    model,
    user_id: str,
    values: Dict[str, Any],
    record_id: Optional[uuid.UUID] = None,
    **filters: Any,
):
    clauses = _owned(model, user_id, filters)
    if record_id is not None:
        clauses.append(model.id == record_id)
    return update(model).where(*clauses).values(**values)


# ── Operations ─────────────────────────────────────────────────────────


async def fetch_latest(session: AsyncSession, model, user_id: str, **filters: Any):
    try:
        result = await session.execute(latest_record_stmt(model, user_id, **filters))
        return result.scalars().first()
    except SQLAlchemyError as exc:
        logger.error("fetch_latest(%s) failed: %s", model.__tablename__, exc)
        raise StoreError(str(exc)) from exc


async def list_records(session: AsyncSession, model, user_id: str, **filters: Any) -> list:
    """All matching rows for the user, oldest first."""
    try:
        result = await session.execute(
            select(model)
            .where(*_owned(model, user_id, filters))
            .order_by(model.created_at.asc())
        )
        return list(result.scalars().all())
    except SQLAlchemyError as exc:
        logger.error("list_records(%s) failed: %s", model.__tablename__, exc)
        raise StoreError(str(exc)) from exc


async def delete_records(
    session: AsyncSession,
    model,
    user_id: str,
    record_id: Optional[uuid.UUID] = None,
    **filters: Any,
) -> int:
    """Delete the user's matching rows. Returns the affected row count."""
    try:
        result = await session.execute(delete_stmt(model, user_id, record_id, **filters))
        await session.flush()
        return result.rowcount or 0
    except SQLAlchemyError as exc:
        logger.error("delete_records(%s) failed: %s", model.__tablename__, exc)
        raise StoreError(str(exc)) from exc


async def update_records(
    session: AsyncSession,
    model,
    user_id: str,
    values: Dict[str, Any],
    record_id: Optional[uuid.UUID] = None,
    **filters: Any,
) -> int:
    """Update the user's matching rows. Returns the affected row count."""
    try:
        result = await session.execute(
            update_stmt(model, user_id, values, record_id, **filters)
        )
        await session.flush()
        return result.rowcount or 0
    except SQLAlchemyError as exc:
        logger.error("update_records(%s) failed: %s", model.__tablename__, exc)
        raise StoreError(str(exc)) from exc


async def save_record(
    session: AsyncSession,
    model,
    user_id: str,
    match: Dict[str, Any],
    values: Dict[str, Any],
):
    """Update the user's latest row matching ``match`` or insert a new one."""
    try:
        existing = (
            await session.execute(latest_record_stmt(model, user_id, **match))
        ).scalars().first()
        if existing is not None:
            for key, value in values.items():
                setattr(existing, key, value)
            record = existing
        else:
            record = model(user_id=_to_uuid(user_id), **match, **values)
            session.add(record)
        await session.flush()
        return record
    except SQLAlchemyError as exc:
        logger.error("save_record(%s) failed: %s", model.__tablename__, exc)
        raise StoreError(str(exc)) from exc


async def insert_record(session: AsyncSession, model, user_id: str, **values: Any):
    try:
        record = model(user_id=_to_uuid(user_id), **values)
        session.add(record)
        await session.flush()
        return record
    except SQLAlchemyError as exc:
        logger.error("insert_record(%s) failed: %s", model.__tablename__, exc)
        raise StoreError(str(exc)) from exc


async def sync_tool_settings(
    session: AsyncSession,
    user_id: str,
    key: str,
    values: Dict[str, Any],
) -> bool:
    """
    Best-effort merge of ``values`` into ``pro_tools_configs.settings[key]``.

    Runs inside a SAVEPOINT so a failure never poisons the caller's
    transaction. Returns False (and logs) instead of raising.
    """
    uid = _to_uuid(user_id)
    try:
        async with session.begin_nested():
            current = (
                await session.execute(
                    select(ProToolsConfig.settings).where(ProToolsConfig.user_id == uid)
                )
            ).scalar_one_or_none() or {}
            merged = dict(current)
            merged[key] = {**(current.get(key) or {}), **values}
            stmt = (
                pg_insert(ProToolsConfig)
                .values(user_id=uid, settings=merged)
                .on_conflict_do_update(
                    index_elements=["user_id"],
                    set_={"settings": merged},
                )
            )
            await session.execute(stmt)
        return True
    except Exception as exc:
        logger.warning("Settings sync for %s/%s skipped: %s", user_id, key, exc)
        return False


async def ping(session: AsyncSession) -> bool:
    """Lightweight reachability check against the primary store."""
    try:
        await session.execute(text("SELECT user_id FROM users LIMIT 1"))
        return True
    except Exception as exc:
        logger.warning("Database ping failed: %s", exc)
        return False


def serialize_records(rows: List[Any], fields: List[str]) -> List[Dict[str, Any]]:
    """Project ORM rows onto JSON-safe dicts (no tokens)."""
    out = []
    for row in rows:
        item = {}
        for field in fields:
            value = getattr(row, field, None)
            if isinstance(value, uuid.UUID):
                value = str(value)
            elif hasattr(value, "isoformat"):
                value = value.isoformat()
            item[field] = value
        out.append(item)
    return out
