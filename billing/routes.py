"""
Billing routes — proxy subscription cancellation to Stripe.

Route prefix: /api/billing

The Stripe webhook (handled elsewhere) is the authority on subscription
state; ``cancel`` only asks Stripe and writes nothing locally.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import BadRequest, ConfigurationMissing, UpstreamError
from auth.dependencies import db_session, get_current_user_id
from billing.stripe import StripeClient, StripeError, StripeNotConfigured
from database.helpers import fetch_latest, update_records
from database.models import Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


def get_stripe_client() -> StripeClient:
    return StripeClient()


async def _subscription_id(session: AsyncSession, user_id: str) -> str:
    sub = await fetch_latest(session, Subscription, user_id)
    sub_id = sub.stripe_subscription_id if sub is not None else None
    if not sub_id:
        raise BadRequest("No Stripe subscription found")
    return sub_id


async def _request_cancel_flag(stripe: StripeClient, sub_id: str, cancel: bool) -> Dict[str, Any]:
    try:
        return await stripe.set_cancel_at_period_end(sub_id, cancel)
    except StripeNotConfigured:
        raise ConfigurationMissing("Missing STRIPE_SECRET_KEY")
    except StripeError as exc:
        logger.error("Stripe cancel_at_period_end=%s failed for %s: %s", cancel, sub_id, exc)
        raise UpstreamError("Payment provider error")


def _period_end_date(epoch: Optional[int]):
    if not epoch:
        return None
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).date()


@router.post("/cancel")
async def cancel_subscription(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    stripe: StripeClient = Depends(get_stripe_client),
) -> Dict[str, bool]:
    """Cancel at the end of the current period (one month notice)."""
    sub_id = await _subscription_id(session, user_id)
    await _request_cancel_flag(stripe, sub_id, cancel=True)
    logger.info("Cancellation requested for user %s (%s)", user_id, sub_id)
    return {"ok": True}


@router.post("/uncancel")
async def uncancel_subscription(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
    stripe: StripeClient = Depends(get_stripe_client),
) -> Dict[str, bool]:
    """Lift a scheduled cancellation and refresh the local row for the UI."""
    sub_id = await _subscription_id(session, user_id)
    updated = await _request_cancel_flag(stripe, sub_id, cancel=False)
    await update_records(
        session,
        Subscription,
        user_id,
        {
            "cancel_requested_at": None,
            "end_date": None,
            "status": updated.get("status"),
            "next_renewal_date": _period_end_date(updated.get("current_period_end")),
        },
    )
    logger.info("Cancellation lifted for user %s (%s)", user_id, sub_id)
    return {"ok": True}
