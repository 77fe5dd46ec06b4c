"""
Pydantic schemas for request bodies and JSON responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Dashboard events
# ═══════════════════════════════════════════════════════════════════════════════

BOOSTER_EVENT_TYPES = ("publish", "review_mail", "promo_mail")
FIDELISER_EVENT_TYPES = ("newsletter_mail", "thanks_mail", "satisfaction_mail")


class EventRequest(BaseModel):
    type: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class OkResponse(BaseModel):
    ok: bool = True


# ═══════════════════════════════════════════════════════════════════════════════
# Calendar
# ═══════════════════════════════════════════════════════════════════════════════


class CalendarAccount(BaseModel):
    id: str
    provider: str
    email_address: Optional[str] = None
    display_name: Optional[str] = None
    status: str
    created_at: Optional[str] = None


class CalendarAccountResponse(BaseModel):
    account: Optional[CalendarAccount] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════════


class HealthReport(BaseModel):
    ok: bool
    checks: Dict[str, bool]
    ts: str
    version: Optional[str] = None
