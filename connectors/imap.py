"""
IMAP mailboxes are added with credentials, not OAuth; only disconnect and
status go through the connector interface.
"""

from __future__ import annotations

from connectors.base import MailAccountConnector


class ImapConnector(MailAccountConnector):
    mail_provider = "imap"
    supports_oauth = False

    @property
    def provider_name(self) -> str:
        return "imap"

    @property
    def display_name(self) -> str:
        return "IMAP"

    async def store_connection(self, session, user_id, token_data, state):
        """
        Not reachable: ``supports_oauth`` is False, so no start/callback route
        dispatches here. IMAP rows are written by the credential flow.
        """
        raise NotImplementedError("IMAP accounts are linked with credentials, not OAuth")
