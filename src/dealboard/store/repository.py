"""Repositories over the local store -- opportunities, sync log, preferences.

Each repository holds a LocalStore and builds SQLAlchemy Core statements;
writes whose SQL differs per backend go through the store's neutral Upsert.
Methods that take ``tx`` run on that open transaction when given, otherwise
in their own.

Timestamps written here (updated_at, last_sync, sync_timestamp) are taken
from the application clock so that ordering is microsecond-precise on both
backends.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import and_, func, not_, or_, select, update

from src.dealboard.crm.naming import parse_opportunity_name
from src.dealboard.crm.schemas import RawOpportunity
from src.dealboard.store.adapter import LocalStore, StoreSession, Upsert, WriteResult
from src.dealboard.store.models import (
    PREFERENCE_FIELDS,
    SYNCED_COLUMNS,
    OpportunityModel,
    SyncLogModel,
    UserPreferenceModel,
)

logger = structlog.get_logger(__name__)

opportunities = OpportunityModel.__table__
user_preferences = UserPreferenceModel.__table__
sync_log = SyncLogModel.__table__


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def opportunity_row(opp: RawOpportunity, synced_at: datetime) -> dict[str, Any]:
    """Map a fetched opportunity to an opportunities row.

    The row id is the Salesforce id. Location and customer preferences are
    derived from the opportunity name; the name itself is stored verbatim.
    """
    parsed = parse_opportunity_name(opp.name)
    return {
        "id": opp.id,
        "sf_id": opp.id,
        "name": opp.name,
        "stage": opp.stage_name,
        "amount": opp.amount,
        "close_date": opp.close_date,
        "created_date": opp.created_date,
        "last_modified": opp.last_modified_date,
        "last_contact_date": opp.last_contact_date,
        "account_name": opp.account_name,
        "account_phone": opp.account_phone,
        "account_person_mobile_phone": opp.account_person_mobile_phone,
        "opportunity_phone": opp.opportunity_phone,
        "owner_name": opp.owner_name,
        "next_step": opp.next_step,
        "description": opp.description,
        "customer_preferences": parsed.preferences,
        "location": parsed.location,
        "last_sync": synced_at,
        "is_active": 1,
        "created_at": synced_at,
        "updated_at": synced_at,
    }


class OpportunityRepository:
    """Reads and writes of the opportunities table."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def upsert_opportunity(
        self,
        opp: RawOpportunity,
        *,
        synced_at: datetime | None = None,
        tx: StoreSession | None = None,
    ) -> WriteResult:
        """Insert a new row or refresh the synchronized columns of an existing one.

        Locally-owned columns (priority, notes, follow-up, engagement) and
        created_at are never part of the update set.
        """
        op = Upsert(
            table=opportunities,
            values=opportunity_row(opp, synced_at or _utcnow()),
            conflict_columns=("sf_id",),
            update_columns=SYNCED_COLUMNS,
        )
        target = tx or self._store
        return await target.write(op)

    async def get(self, sf_id: str) -> dict[str, Any] | None:
        return await self._store.read_one(
            select(opportunities).where(opportunities.c.sf_id == sf_id)
        )

    async def list_rows(
        self,
        *,
        exclude_owners: list[str] | None = None,
        exclude_upgrade_design: bool = False,
        created_from: str | None = None,
        created_before: str | None = None,
        close_date_cutoff: str | None = None,
        late_stages: tuple[str, ...] = (),
        limit: int | None = 100,
    ) -> list[dict[str, Any]]:
        """Active rows matching every given filter, newest last_modified first.

        Args:
            exclude_owners: Owner name fragments, case-insensitive. Rows with
                no owner are kept.
            exclude_upgrade_design: Drop rows whose name mentions "upgrade"
                or "design". Rows with no name are kept.
            created_from: Inclusive lower bound on created_date (ISO text).
            created_before: Exclusive upper bound on created_date (ISO text).
            close_date_cutoff: With late_stages, keep rows closing on or
                before this date OR in one of late_stages.
            late_stages: Stage names that always pass the close-date filter.
            limit: Maximum rows, or None for all.
        """
        stmt = select(opportunities).where(opportunities.c.is_active == 1)

        owner = func.lower(opportunities.c.owner_name)
        for fragment in exclude_owners or []:
            stmt = stmt.where(
                or_(
                    opportunities.c.owner_name.is_(None),
                    not_(owner.contains(fragment.lower(), autoescape=True)),
                )
            )

        if exclude_upgrade_design:
            name = func.lower(opportunities.c.name)
            stmt = stmt.where(
                or_(
                    opportunities.c.name.is_(None),
                    and_(not_(name.like("%upgrade%")), not_(name.like("%design%"))),
                )
            )

        if created_from is not None:
            stmt = stmt.where(opportunities.c.created_date >= created_from)
        if created_before is not None:
            stmt = stmt.where(opportunities.c.created_date < created_before)

        if close_date_cutoff is not None:
            stmt = stmt.where(
                or_(
                    opportunities.c.close_date <= close_date_cutoff,
                    opportunities.c.stage.in_(late_stages),
                )
            )

        stmt = stmt.order_by(opportunities.c.last_modified.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        return await self._store.read(stmt)

    async def _update_local(self, sf_id: str, **values: Any) -> int:
        result = await self._store.write(
            update(opportunities)
            .where(opportunities.c.sf_id == sf_id)
            .values(**values, updated_at=_utcnow())
        )
        return result.affected_count

    async def update_priority(self, sf_id: str, priority_level: int) -> int:
        return await self._update_local(sf_id, priority_level=priority_level)

    async def update_notes(self, sf_id: str, notes: str | None) -> int:
        return await self._update_local(sf_id, custom_notes=notes)

    async def set_follow_up_date(self, sf_id: str, follow_up_date: str | None) -> int:
        return await self._update_local(sf_id, follow_up_date=follow_up_date)

    async def count(self) -> int:
        row = await self._store.read_one(
            select(func.count().label("total")).select_from(opportunities)
        )
        return int(row["total"]) if row else 0

    async def sample(self, limit: int = 5) -> list[dict[str, Any]]:
        return await self._store.read(select(opportunities).limit(limit))

    async def reactivate_missing_flags(self) -> int:
        """Set is_active = 1 on rows where it is NULL. Returns rows changed."""
        result = await self._store.write(
            update(opportunities)
            .where(opportunities.c.is_active.is_(None))
            .values(is_active=1)
        )
        return result.affected_count


class SyncLogRepository:
    """Append-only access to sync_log."""

    SYNC_TYPE = "full_sync"

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def append(
        self,
        status: str,
        records_synced: int,
        error_message: str | None = None,
    ) -> None:
        await self._store.write(
            sync_log.insert().values(
                sync_type=self.SYNC_TYPE,
                sync_status=status,
                records_synced=records_synced,
                error_message=error_message,
                sync_timestamp=_utcnow(),
            )
        )
        logger.info(
            "sync_log.appended",
            status=status,
            records_synced=records_synced,
        )

    async def last(self) -> dict[str, Any] | None:
        """Newest entry by timestamp, ties broken by id."""
        return await self._store.read_one(
            select(sync_log)
            .order_by(sync_log.c.sync_timestamp.desc(), sync_log.c.id.desc())
            .limit(1)
        )


class PreferenceRepository:
    """Per-user annotations, unique on (user_id, opportunity_id)."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def get(self, user_id: str, opportunity_id: str) -> dict[str, Any] | None:
        return await self._store.read_one(
            select(user_preferences).where(
                user_preferences.c.user_id == user_id,
                user_preferences.c.opportunity_id == opportunity_id,
            )
        )

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return await self._store.read(
            select(user_preferences)
            .where(user_preferences.c.user_id == user_id)
            .order_by(user_preferences.c.id)
        )

    async def save(
        self,
        user_id: str,
        opportunity_id: str,
        fields: dict[str, Any],
        *,
        tx: StoreSession | None = None,
    ) -> WriteResult:
        """Write every preference field for one (user, opportunity) pair.

        ``fields`` must already be complete; this is a replacement, not a merge.
        """
        now = _utcnow()
        values = {name: fields.get(name) for name in PREFERENCE_FIELDS}
        values.update(
            user_id=user_id,
            opportunity_id=opportunity_id,
            created_at=now,
            updated_at=now,
        )
        op = Upsert(
            table=user_preferences,
            values=values,
            conflict_columns=("user_id", "opportunity_id"),
            update_columns=(*PREFERENCE_FIELDS, "updated_at"),
        )
        target = tx or self._store
        return await target.write(op)

    async def save_many(self, user_id: str, items: list[tuple[str, dict[str, Any]]]) -> int:
        """Save several (opportunity_id, fields) pairs in one transaction.

        Either every annotation is written or none is.
        """
        async with self._store.transaction() as tx:
            for opportunity_id, fields in items:
                await self.save(user_id, opportunity_id, fields, tx=tx)
        return len(items)
