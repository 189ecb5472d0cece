"""Shared test fixtures.

Provides:
- store: a bootstrapped SQLite store in a per-test temporary file
- repositories over that store
- make_opportunity: factory for RawOpportunity records
- FakeSoqlClient: an in-memory stand-in for SalesforceClient.query
"""

from __future__ import annotations

import re
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio

from src.dealboard.core.errors import QueryError
from src.dealboard.crm.schemas import RawOpportunity
from src.dealboard.store.adapter import SQLiteStore, open_sqlite_store
from src.dealboard.store.repository import (
    OpportunityRepository,
    PreferenceRepository,
    SyncLogRepository,
)


# ── Store ────────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[SQLiteStore, None]:
    """Bootstrapped SQLite store, disposed after the test."""
    sqlite_store = open_sqlite_store(str(tmp_path / "opportunities.db"))
    await sqlite_store.bootstrap()
    yield sqlite_store
    await sqlite_store.close()


@pytest.fixture
def opportunity_repo(store) -> OpportunityRepository:
    return OpportunityRepository(store)


@pytest.fixture
def sync_log_repo(store) -> SyncLogRepository:
    return SyncLogRepository(store)


@pytest.fixture
def preference_repo(store) -> PreferenceRepository:
    return PreferenceRepository(store)


# ── Factories ────────────────────────────────────────────────────────────────


def _make_opportunity(sf_id: str = "006A", **overrides: Any) -> RawOpportunity:
    values: dict[str, Any] = {
        "id": sf_id,
        "name": f"Customer {sf_id} - TX, white oak",
        "stage_name": "Prospecting",
        "amount": 25000.0,
        "close_date": "2024-02-15",
        "created_date": "2024-01-15T10:00:00.000+0000",
        "last_modified_date": "2024-01-16T09:00:00.000+0000",
        "account_id": f"001{sf_id}",
        "account_name": f"Account {sf_id}",
        "account_phone": "555-0100",
        "owner_name": "Sam Seller",
        "next_step": None,
        "description": None,
    }
    values.update(overrides)
    return RawOpportunity(**values)


@pytest.fixture
def make_opportunity() -> Callable[..., RawOpportunity]:
    return _make_opportunity


# ── Fake Salesforce ──────────────────────────────────────────────────────────

_IDS = re.compile(r"'([^']*)'")
_FROM = re.compile(r"FROM (\w+)")
_ALIAS = re.compile(r"MAX\(CreatedDate\) (\w+)")


class FakeSoqlClient:
    """Answers activity aggregate queries from an in-memory table.

    ``activity[(sobject, what_id)] = iso_datetime``. ``fail`` decides, per
    query, whether to raise QueryError instead of answering.
    """

    def __init__(
        self,
        activity: dict[tuple[str, str], str] | None = None,
        opportunities: list[dict[str, Any]] | None = None,
        fail: Callable[[str], bool] | None = None,
    ) -> None:
        self.activity = activity or {}
        self.opportunities = opportunities or []
        self.fail = fail
        self.queries: list[str] = []

    async def query(self, soql: str) -> list[dict[str, Any]]:
        self.queries.append(soql)
        if self.fail is not None and self.fail(soql):
            raise QueryError("MALFORMED_QUERY", operation="query", error_code="MALFORMED_QUERY")

        sobject = _FROM.search(soql).group(1)
        if sobject == "Opportunity":
            return list(self.opportunities)

        alias = _ALIAS.search(soql).group(1)
        records = []
        for what_id in _IDS.findall(soql):
            value = self.activity.get((sobject, what_id))
            if value is not None:
                records.append({"WhatId": what_id, alias: value})
        return records


@pytest.fixture
def fake_soql() -> type[FakeSoqlClient]:
    return FakeSoqlClient
