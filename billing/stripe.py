"""
Minimal Stripe REST client (form-encoded POSTs over httpx).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import config

logger = logging.getLogger(__name__)

_STRIPE_API_BASE = "https://api.stripe.com/v1"


class StripeError(Exception):
    """Stripe refused the call or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StripeNotConfigured(StripeError):
    pass


class StripeClient:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        *,
        base_url: str = _STRIPE_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._secret_key = secret_key if secret_key is not None else config.stripe_secret_key
        self._base_url = base_url
        self._transport = transport

    async def post(self, path: str, form: Dict[str, str]) -> Dict[str, Any]:
        if not self._secret_key:
            raise StripeNotConfigured("STRIPE_SECRET_KEY not configured")
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=20, transport=self._transport
            ) as client:
                resp = await client.post(
                    path,
                    data=form,
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                )
        except httpx.HTTPError as exc:
            raise StripeError(f"Stripe unreachable: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.is_error:
            message = (data.get("error") or {}).get("message") or f"Stripe error ({resp.status_code})"
            raise StripeError(message, status_code=resp.status_code)
        return data

    async def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Dict[str, Any]:
        """Schedule (or lift) cancellation at the end of the current billing period."""
        return await self.post(
            f"/subscriptions/{subscription_id}",
            {"cancel_at_period_end": "true" if cancel else "false"},
        )
