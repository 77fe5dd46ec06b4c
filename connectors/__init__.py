"""
connectors — third-party integrations linked to a dashboard user.

Provides a connector framework that handles:
  • OAuth2 authorization-URL generation with signed, single-use state
  • Callback handling (code → token exchange)
  • Fernet encryption of tokens at rest
  • Disconnect (hard delete or soft status update, per provider)
  • Connection status for dashboard widgets

Each provider (Google, Meta, LinkedIn, Microsoft, IMAP) is a subclass of BaseConnector.
"""
