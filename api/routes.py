"""
Dashboard API routes — calendar, activity events, health.

Route prefix: /api
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import BadRequest
from auth.dependencies import db_session, get_current_user_id, get_optional_user_id
from config.settings import config
from connectors.routes import integration_status
from database.helpers import insert_record, list_records, ping, serialize_records
from database.models import BoosterEvent, FideliserEvent, Integration
from database.session import async_session_factory
from utils.schemas import (
    BOOSTER_EVENT_TYPES,
    FIDELISER_EVENT_TYPES,
    CalendarAccountResponse,
    EventRequest,
    HealthReport,
    OkResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Calendar ───────────────────────────────────────────────────────────


@router.get("/calendar/account", response_model=CalendarAccountResponse)
async def calendar_account(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """The user's first linked Google calendar, or null."""
    rows = await list_records(session, Integration, user_id, provider="google", category="calendar")
    if not rows:
        return {"account": None}
    account = serialize_records(
        rows[:1], ["id", "provider", "email_address", "status", "created_at"]
    )[0]
    account["display_name"] = rows[0].resource_label
    return {"account": account}


@router.get("/calendar/status")
async def calendar_status(
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
):
    return await integration_status("google-calendar", request, user_id, session)


# ── Activity events ────────────────────────────────────────────────────


async def _record_event(
    session: AsyncSession,
    model,
    user_id: str,
    req: EventRequest,
    allowed: Sequence[str],
) -> Dict[str, bool]:
    if not req.type or req.type not in allowed:
        raise BadRequest("Invalid type")
    await insert_record(session, model, user_id, type=req.type, payload=req.payload)
    logger.debug("Recorded %s event %s for %s", model.__tablename__, req.type, user_id)
    return {"ok": True}


@router.post("/booster/events", response_model=OkResponse)
async def booster_event(
    req: EventRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, bool]:
    return await _record_event(session, BoosterEvent, user_id, req, BOOSTER_EVENT_TYPES)


@router.post("/fideliser/events", response_model=OkResponse)
async def fideliser_event(
    req: EventRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, bool]:
    return await _record_event(session, FideliserEvent, user_id, req, FIDELISER_EVENT_TYPES)


# ── Health ─────────────────────────────────────────────────────────────


def aggregate_checks(checks: Mapping[str, bool]) -> Tuple[bool, int]:
    """Overall health is the AND of every check."""
    ok = all(bool(v) for v in checks.values())
    return ok, (status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE)


async def check_database() -> bool:
    if not config.database_url:
        return False
    try:
        async with async_session_factory() as session:
            return await ping(session)
    except Exception as exc:
        logger.warning("Database check failed: %s", exc)
        return False


@router.get("/health", response_model=HealthReport)
async def health_check() -> JSONResponse:
    checks = dict(config.presence_checks())
    checks["database"] = await check_database()
    ok, code = aggregate_checks(checks)
    report = HealthReport(
        ok=ok,
        checks=checks,
        ts=datetime.now(timezone.utc).isoformat(),
        version=config.app_version or None,
    )
    return JSONResponse(status_code=code, content=report.model_dump())
