"""
SQLAlchemy ORM models for the dashboard backend tables.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, declared_attr


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class _OwnedMixin:
    """Columns shared by every per-user row."""

    @declared_attr
    def user_id(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class _IntegrationColumns(_OwnedMixin):
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(String(32), nullable=False)
    category = Column(String(32))
    product = Column(String(32))
    source = Column(String(32))
    status = Column(String(24), nullable=False, default="connected")
    resource_id = Column(String(256))
    resource_label = Column(String(256))
    email_address = Column(String(255))
    meta = Column(JSONB, default=dict)
    access_token_enc = Column(Text)
    refresh_token_enc = Column(Text)
    expires_at = Column(DateTime(timezone=True))


class Integration(_IntegrationColumns, Base):
    """One user's link to one provider/category (calendar, social pages…)."""

    __tablename__ = "integrations"
    __table_args__ = (
        Index("ix_integrations_owner_provider", "user_id", "provider", "category"),
    )


class StatsIntegration(_IntegrationColumns, Base):
    """Statistics sources: Google Business Profile, Analytics, Search Console."""

    __tablename__ = "stats_integrations"
    __table_args__ = (
        Index("ix_stats_integrations_owner_source", "user_id", "provider", "source", "product"),
    )


class MailAccount(_OwnedMixin, Base):
    __tablename__ = "mail_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(String(32), nullable=False)
    email_address = Column(String(255))
    display_name = Column(String(255))
    status = Column(String(24), nullable=False, default="connected")
    access_token_enc = Column(Text)
    refresh_token_enc = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    meta = Column(JSONB, default=dict)


class OAuthState(Base):
    """Server-side half of an OAuth ``state`` parameter (single use)."""

    __tablename__ = "oauth_states"

    nonce = Column(String(64), primary_key=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=True)
    provider = Column(String(32), nullable=False)
    return_to = Column(Text, nullable=False, default="/dashboard")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True))


class Subscription(_OwnedMixin, Base):
    __tablename__ = "subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    stripe_subscription_id = Column(String(128))
    status = Column(String(32))
    cancel_requested_at = Column(DateTime(timezone=True))
    end_date = Column(Date)
    next_renewal_date = Column(Date)


class ProToolsConfig(Base):
    """Denormalized per-user dashboard settings blob."""

    __tablename__ = "pro_tools_configs"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    settings = Column(JSONB, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class _EventColumns(_OwnedMixin):
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String(32), nullable=False)
    payload = Column(JSONB, nullable=False, default=dict)


class BoosterEvent(_EventColumns, Base):
    __tablename__ = "app_events"


class FideliserEvent(_EventColumns, Base):
    __tablename__ = "fideliser_events"
