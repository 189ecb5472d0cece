"""Persistence models for the local opportunity mirror.

Three tables, identical on SQLite and PostgreSQL apart from one constraint:
- OpportunityModel: one row per Salesforce opportunity (sf_id unique)
- UserPreferenceModel: per-user annotation overlay, unique per (user, opportunity)
- SyncLogModel: append-only history of sync runs

Remote dates (close/created/last-modified/last-contact) are kept as the
ISO-8601 text Salesforce returns so both backends order them identically.
The foreign key from user_preferences to opportunities is only emitted on
SQLite; PostgreSQL tables carry none and orphaned annotations are tolerated.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKeyConstraint,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.dealboard.core.database import Base


class OpportunityModel(Base):
    """Mirror of a Salesforce opportunity plus locally-owned annotations.

    Columns fall into two groups. Synchronized columns are rewritten by every
    sync (see SYNCED_COLUMNS). Locally-owned columns (priority_level,
    custom_notes, follow_up_date, engagement_*) are only ever written by the
    annotation endpoints.
    """

    __tablename__ = "opportunities"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    sf_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)
    stage: Mapped[str | None] = mapped_column(Text)
    amount: Mapped[float | None] = mapped_column(Float)
    close_date: Mapped[str | None] = mapped_column(Text)
    created_date: Mapped[str | None] = mapped_column(Text)
    last_modified: Mapped[str | None] = mapped_column(Text)
    last_contact_date: Mapped[str | None] = mapped_column(Text)
    account_name: Mapped[str | None] = mapped_column(Text)
    account_phone: Mapped[str | None] = mapped_column(Text)
    account_person_mobile_phone: Mapped[str | None] = mapped_column(Text)
    opportunity_phone: Mapped[str | None] = mapped_column(Text)
    owner_name: Mapped[str | None] = mapped_column(Text)
    next_step: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    priority_level: Mapped[int] = mapped_column(Integer, default=1, server_default=text("1"))
    custom_notes: Mapped[str | None] = mapped_column(Text)
    follow_up_date: Mapped[str | None] = mapped_column(Text)
    customer_preferences: Mapped[str | None] = mapped_column(Text)
    location: Mapped[str | None] = mapped_column(Text)
    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[int | None] = mapped_column(Integer, default=1, server_default=text("1"))
    engagement_score: Mapped[int | None] = mapped_column(Integer, server_default=text("0"))
    engagement_analysis: Mapped[str | None] = mapped_column(Text)
    has_engagement: Mapped[int | None] = mapped_column(Integer, server_default=text("0"))
    engagement_analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class UserPreferenceModel(Base):
    """Per-user annotation for one opportunity (colour, intent, board state)."""

    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "opportunity_id",
            name="user_preferences_unique_user_opportunity",
        ),
        ForeignKeyConstraint(
            ["opportunity_id"],
            ["opportunities.sf_id"],
            name="fk_user_preferences_opportunity",
        ).ddl_if(dialect="sqlite"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, default="default", server_default=text("'default'"))
    opportunity_id: Mapped[str] = mapped_column(Text, nullable=False)
    priority_color: Mapped[str] = mapped_column(String(16), default="gray", server_default=text("'gray'"))
    intent_level: Mapped[int] = mapped_column(Integer, default=5, server_default=text("5"))
    five_yard_line: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    follow_up_date: Mapped[str | None] = mapped_column(Text)
    position_x: Mapped[float | None] = mapped_column(Float)
    position_y: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class SyncLogModel(Base):
    """One row per sync run; never updated or deleted."""

    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str | None] = mapped_column(Text)
    sync_status: Mapped[str | None] = mapped_column(Text)
    records_synced: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    sync_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


# ── Column Groups ───────────────────────────────────────────────────────────

# The only columns an upsert may overwrite when the sf_id already exists.
SYNCED_COLUMNS: tuple[str, ...] = (
    "name",
    "stage",
    "amount",
    "close_date",
    "created_date",
    "last_modified",
    "last_contact_date",
    "account_name",
    "account_phone",
    "account_person_mobile_phone",
    "opportunity_phone",
    "owner_name",
    "next_step",
    "description",
    "customer_preferences",
    "location",
    "last_sync",
    "is_active",
    "updated_at",
)

LOCALLY_OWNED_COLUMNS: tuple[str, ...] = (
    "priority_level",
    "custom_notes",
    "follow_up_date",
    "engagement_score",
    "engagement_analysis",
    "has_engagement",
    "engagement_analyzed_at",
    "created_at",
)

PREFERENCE_FIELDS: tuple[str, ...] = (
    "priority_color",
    "intent_level",
    "five_yard_line",
    "follow_up_date",
    "position_x",
    "position_y",
)

# Columns added after the first deployed schema. Databases created by older
# releases receive them at bootstrap; fresh ones already have them.
ADDITIVE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("opportunities", "last_contact_date"),
    ("opportunities", "account_person_mobile_phone"),
    ("opportunities", "opportunity_phone"),
    ("opportunities", "engagement_score"),
    ("opportunities", "engagement_analysis"),
    ("opportunities", "has_engagement"),
    ("opportunities", "engagement_analyzed_at"),
    ("user_preferences", "position_x"),
    ("user_preferences", "position_y"),
    ("user_preferences", "created_at"),
    ("user_preferences", "updated_at"),
)
