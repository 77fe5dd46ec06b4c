"""
Application settings loaded from environment variables.
"""

from typing import List

from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised at startup when a setting the service cannot run without is empty."""


class Settings(BaseSettings):
    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = ""

    # ── Security Secrets ──────────────────────────────────────────────────
    session_secret: str = ""                 # HMAC secret for session tokens
    session_expiry_seconds: int = 604800     # 7 days
    session_cookie_name: str = "session"
    oauth_state_secret: str = ""             # HMAC secret for OAuth CSRF state
    oauth_state_ttl_seconds: int = 600
    token_encryption_key: str = ""           # Fernet key for encrypting OAuth tokens at rest

    # ── Public site ──────────────────────────────────────────────────────
    site_url: str = ""                       # canonical base URL used for OAuth callbacks

    # ── Google ───────────────────────────────────────────────────────────
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""            # Gmail
    google_calendar_redirect_uri: str = ""
    google_gmb_redirect_uri: str = ""
    google_stats_redirect_uri: str = ""

    # ── Meta (Facebook / Instagram / Messenger) ──────────────────────────
    facebook_app_id: str = ""
    facebook_app_secret: str = ""
    facebook_redirect_uri: str = ""
    instagram_redirect_uri: str = ""
    messenger_redirect_uri: str = ""

    # ── LinkedIn ─────────────────────────────────────────────────────────
    linkedin_client_id: str = ""
    linkedin_client_secret: str = ""
    linkedin_redirect_uri: str = ""

    # ── Microsoft ────────────────────────────────────────────────────────
    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""
    microsoft_redirect_uri: str = ""

    # ── Billing ──────────────────────────────────────────────────────────
    stripe_secret_key: str = ""

    # ── Server ───────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False
    cors_origins: list = ["*"]
    app_version: str = ""

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    def _required(self) -> dict:
        # the service cannot run without these; TOKEN_ENCRYPTION_KEY is optional
        return {
            "DATABASE_URL": self.database_url,
            "SESSION_SECRET": self.session_secret,
            "OAUTH_STATE_SECRET": self.oauth_state_secret,
        }

    def missing_required(self) -> List[str]:
        """Env names of the core settings that are empty."""
        return [name for name, value in self._required().items() if not value]

    def presence_checks(self) -> dict:
        """Boolean presence of the required settings, for the health check."""
        return {name.lower(): bool(value) for name, value in self._required().items()}

    def callback_url(self, slug: str) -> str:
        """Default OAuth redirect URI for a connector slug, '' without a site URL."""
        if not self.site_url:
            return ""
        return f"{self.site_url.rstrip('/')}/api/integrations/{slug}/callback"


def validate_config(settings: "Settings") -> None:
    """Refuse to start when a core setting is missing."""
    missing = settings.missing_required()
    if missing:
        raise ConfigurationError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )


config = Settings()
