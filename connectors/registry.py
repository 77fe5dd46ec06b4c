"""
ConnectorRegistry — dispatch table from route slug to connector.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from connectors.base import BaseConnector
from connectors.google import (
    GmailConnector,
    GoogleBusinessConnector,
    GoogleCalendarConnector,
    GoogleStatsConnector,
)
from connectors.imap import ImapConnector
from connectors.linkedin import LinkedInConnector
from connectors.meta import FacebookConnector, InstagramConnector, MessengerConnector
from connectors.microsoft import MicrosoftConnector

logger = logging.getLogger(__name__)

# ── All known connectors — add new ones here ─────────────────────────────

_ALL_CONNECTORS: List[BaseConnector] = [
    GmailConnector(),
    GoogleCalendarConnector(),
    GoogleBusinessConnector(),
    GoogleStatsConnector(),
    FacebookConnector(),
    InstagramConnector(),
    MessengerConnector(),
    LinkedInConnector(),
    MicrosoftConnector(),
    ImapConnector(),
]


class ConnectorRegistry:
    """Singleton registry for all connectors."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {c.provider_name: c for c in _ALL_CONNECTORS}
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def report(self) -> List[str]:
        """
        Log which OAuth connectors lack credentials. Unconfigured connectors
        stay registered: their start route answers 500 instead of 404.
        """
        unconfigured = []
        for conn in self._connectors.values():
            if not conn.supports_oauth:
                continue
            missing = conn.missing_config(for_callback=True)
            if missing:
                unconfigured.append(conn.provider_name)
                logger.warning(
                    "Connector %s not configured — missing %s",
                    conn.provider_name,
                    ", ".join(missing),
                )
            else:
                logger.info("Connector ready: %s (%s)", conn.display_name, conn.provider_name)
        return unconfigured

    def get(self, provider: str) -> Optional[BaseConnector]:
        return self._connectors.get(provider)

    def list_providers(self) -> List[Dict[str, object]]:
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "oauth": c.supports_oauth,
                "configured": c.is_configured(),
                "selectable": c.supports_selection,
            }
            for c in self._connectors.values()
        ]
