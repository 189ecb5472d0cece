"""Activity merge engine -- derives each opportunity's last contact date.

Four signals per opportunity: the newest Task and the newest Event logged
against the opportunity itself, and the newest Task and Event logged against
its account. last_contact_date is the latest of whichever signals exist,
falling back to LastModifiedDate.

Queries run in batches of ACTIVITY_BATCH_SIZE ids so the SOQL IN-list stays
short. Batches are sequential; the four queries of a batch run concurrently.
A failing query only blanks its own signal for its own batch. If the merge
as a whole fails or runs out of time, every opportunity falls back to its
LastModifiedDate -- this step degrades, it never fails the sync.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog

from src.dealboard.core.errors import RemoteSourceError
from src.dealboard.core.monitoring import activity_query_failures_total
from src.dealboard.crm.salesforce import soql_quote
from src.dealboard.crm.schemas import RawOpportunity
from src.dealboard.crm.source import SoqlClient

logger = structlog.get_logger(__name__)

# Account ids that upstream tooling writes as literal strings.
_INVALID_ACCOUNT_IDS = frozenset({"", "undefined", "null"})


def parse_sf_datetime(value: str | None) -> datetime | None:
    """Parse a Salesforce datetime such as 2024-01-15T10:30:00.000+0000."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    elif len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_utc(value: datetime) -> str:
    """Render as ISO-8601 UTC with millisecond precision and a Z suffix."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _activity_query(sobject: str, alias: str, ids: list[str]) -> str:
    id_list = ", ".join(soql_quote(i) for i in ids)
    return (
        f"SELECT WhatId, MAX(CreatedDate) {alias} FROM {sobject} "
        f"WHERE WhatId IN ({id_list}) GROUP BY WhatId"
    )


class ActivityMergeEngine:
    """Attaches last_contact_date to fetched opportunities.

    Args:
        client: SOQL client used for the aggregate activity queries.
        batch_size: Opportunities per batch.
        timeout: Seconds allowed for the whole merge before degrading.
    """

    SIGNALS: tuple[tuple[str, str, str], ...] = (
        # (signal name, sObject, aggregate alias)
        ("opportunity_task", "Task", "LastTaskDate"),
        ("opportunity_event", "Event", "LastEventDate"),
        ("account_task", "Task", "LastTaskDate"),
        ("account_event", "Event", "LastEventDate"),
    )

    def __init__(
        self,
        client: SoqlClient,
        batch_size: int = 50,
        timeout: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._client = client
        self._batch_size = batch_size
        self._timeout = timeout

    async def attach_last_contact_dates(
        self, opportunities: list[RawOpportunity]
    ) -> list[RawOpportunity]:
        """Return copies of the opportunities with last_contact_date set.

        The input list and its records are left untouched.
        """
        if not opportunities:
            return []

        try:
            signals = await asyncio.wait_for(
                self._collect_signals(opportunities), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "activity.merge_timed_out",
                timeout=self._timeout,
                opportunities=len(opportunities),
            )
            return self._fallback(opportunities)
        except Exception as exc:
            logger.error(
                "activity.merge_failed",
                error=str(exc),
                opportunities=len(opportunities),
            )
            return self._fallback(opportunities)

        logger.info(
            "activity.merge_complete",
            opportunities=len(opportunities),
            **{f"{name}_dates": len(found) for name, found in signals.items()},
        )
        return [self._merge_one(opp, signals) for opp in opportunities]

    # ── Collection ─────────────────────────────────────────────────────────

    async def _collect_signals(
        self, opportunities: list[RawOpportunity]
    ) -> dict[str, dict[str, str]]:
        signals: dict[str, dict[str, str]] = {name: {} for name, _, _ in self.SIGNALS}
        total_batches = (len(opportunities) + self._batch_size - 1) // self._batch_size

        for index in range(total_batches):
            batch = opportunities[index * self._batch_size:(index + 1) * self._batch_size]
            opp_ids = [opp.id for opp in batch]
            account_ids = list(dict.fromkeys(
                opp.account_id for opp in batch
                if opp.account_id is not None and opp.account_id not in _INVALID_ACCOUNT_IDS
            ))

            logger.debug(
                "activity.batch_started",
                batch=index + 1,
                total_batches=total_batches,
                opportunities=len(opp_ids),
                accounts=len(account_ids),
            )

            results = await asyncio.gather(*(
                self._run_signal(
                    name,
                    sobject,
                    alias,
                    opp_ids if name.startswith("opportunity") else account_ids,
                    index + 1,
                )
                for name, sobject, alias in self.SIGNALS
            ))
            for (name, _, _), found in zip(self.SIGNALS, results):
                signals[name].update(found)

        return signals

    async def _run_signal(
        self,
        name: str,
        sobject: str,
        alias: str,
        ids: list[str],
        batch_number: int,
    ) -> dict[str, str]:
        if not ids:
            return {}
        try:
            records = await self._client.query(_activity_query(sobject, alias, ids))
        except RemoteSourceError as exc:
            activity_query_failures_total.labels(signal=name).inc()
            logger.warning(
                "activity.batch_query_failed",
                signal=name,
                batch=batch_number,
                error=str(exc),
            )
            return {}
        return _dates_by_what_id(records, alias)

    # ── Merge ──────────────────────────────────────────────────────────────

    def _merge_one(
        self, opp: RawOpportunity, signals: dict[str, dict[str, str]]
    ) -> RawOpportunity:
        candidates = [
            signals["opportunity_task"].get(opp.id),
            signals["opportunity_event"].get(opp.id),
        ]
        if opp.account_id:
            candidates.append(signals["account_task"].get(opp.account_id))
            candidates.append(signals["account_event"].get(opp.account_id))

        parsed = [d for d in (parse_sf_datetime(c) for c in candidates) if d is not None]
        last_contact = format_utc(max(parsed)) if parsed else opp.last_modified_date
        return opp.model_copy(update={"last_contact_date": last_contact})

    @staticmethod
    def _fallback(opportunities: list[RawOpportunity]) -> list[RawOpportunity]:
        return [
            opp.model_copy(update={"last_contact_date": opp.last_modified_date})
            for opp in opportunities
        ]


def _dates_by_what_id(records: list[dict[str, Any]], alias: str) -> dict[str, str]:
    found: dict[str, str] = {}
    for record in records:
        what_id = record.get("WhatId")
        value = record.get(alias)
        if what_id and value:
            found[what_id] = value
    return found
