"""Tests for ActivityMergeEngine.

Verifies:
- last_contact_date is the latest of the four activity signals
- fallback to LastModifiedDate when no signal exists
- sentinel account ids are never queried
- batching keeps every IN-list within the batch size
- a failing sub-query only blanks its own signal
- total failure and timeout degrade to LastModifiedDate for every record
"""

from __future__ import annotations

import asyncio
import re

import httpx
import pytest

from src.dealboard.crm.activity import (
    ActivityMergeEngine,
    format_utc,
    parse_sf_datetime,
)
from src.dealboard.crm.salesforce import SalesforceClient

LOGIN_OK = (
    '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" '
    'xmlns="urn:partner.soap.sforce.com"><soapenv:Body><loginResponse><result>'
    "<serverUrl>https://na1.my.salesforce.com/services/Soap/u/58.0/00D</serverUrl>"
    "<sessionId>SESSION</sessionId>"
    "</result></loginResponse></soapenv:Body></soapenv:Envelope>"
)


def _in_list(soql: str) -> list[str]:
    match = re.search(r"IN \(([^)]*)\)", soql)
    return re.findall(r"'([^']*)'", match.group(1)) if match else []


class TestLastContactDate:
    """Combining the four signals."""

    @pytest.mark.asyncio
    async def test_latest_signal_wins(self, make_opportunity, fake_soql):
        opp = make_opportunity("006A", account_id="001A")
        client = fake_soql(activity={
            ("Task", "006A"): "2024-01-10T09:00:00.000+0000",
            ("Event", "006A"): "2024-01-12T09:00:00.000+0000",
            ("Task", "001A"): "2024-01-20T15:30:00.000+0000",
            ("Event", "001A"): "2024-01-05T09:00:00.000+0000",
        })

        [merged] = await ActivityMergeEngine(client).attach_last_contact_dates([opp])

        assert merged.last_contact_date == "2024-01-20T15:30:00.000Z"

    @pytest.mark.asyncio
    async def test_falls_back_to_last_modified(self, make_opportunity, fake_soql):
        opp = make_opportunity("006A", last_modified_date="2024-01-16T09:00:00.000+0000")

        [merged] = await ActivityMergeEngine(fake_soql()).attach_last_contact_dates([opp])

        assert merged.last_contact_date == "2024-01-16T09:00:00.000+0000"

    @pytest.mark.asyncio
    async def test_input_records_not_mutated(self, make_opportunity, fake_soql):
        opp = make_opportunity("006A")
        client = fake_soql(activity={("Task", "006A"): "2024-01-10T09:00:00.000+0000"})

        merged = await ActivityMergeEngine(client).attach_last_contact_dates([opp])

        assert opp.last_contact_date is None
        assert merged[0] is not opp

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_queries(self, fake_soql):
        client = fake_soql()

        assert await ActivityMergeEngine(client).attach_last_contact_dates([]) == []
        assert client.queries == []


class TestAccountIds:
    @pytest.mark.asyncio
    async def test_sentinel_account_ids_not_queried(self, make_opportunity, fake_soql):
        opps = [
            make_opportunity("006A", account_id="undefined"),
            make_opportunity("006B", account_id="null"),
            make_opportunity("006C", account_id=""),
            make_opportunity("006D", account_id=None),
        ]
        client = fake_soql()

        await ActivityMergeEngine(client).attach_last_contact_dates(opps)

        # Only the two opportunity-level queries ran; account queries had no ids.
        assert len(client.queries) == 2
        for soql in client.queries:
            assert set(_in_list(soql)) == {"006A", "006B", "006C", "006D"}

    @pytest.mark.asyncio
    async def test_shared_account_queried_once_per_batch(self, make_opportunity, fake_soql):
        opps = [make_opportunity(f"006{i}", account_id="001SHARED") for i in range(3)]
        client = fake_soql()

        await ActivityMergeEngine(client).attach_last_contact_dates(opps)

        account_queries = [q for q in client.queries if "001SHARED" in q]
        assert len(account_queries) == 2
        assert all(_in_list(q) == ["001SHARED"] for q in account_queries)


class TestBatching:
    @pytest.mark.asyncio
    async def test_in_lists_never_exceed_batch_size(self, make_opportunity, fake_soql):
        opps = [make_opportunity(f"006{i:03d}") for i in range(120)]
        client = fake_soql()

        await ActivityMergeEngine(client, batch_size=50).attach_last_contact_dates(opps)

        # 3 batches x 4 signals
        assert len(client.queries) == 12
        assert max(len(_in_list(q)) for q in client.queries) == 50
        opp_ids_queried = {i for q in client.queries if "FROM Task" in q for i in _in_list(q) if i.startswith("006")}
        assert len(opp_ids_queried) == 120

    def test_batch_size_must_be_positive(self, fake_soql):
        with pytest.raises(ValueError):
            ActivityMergeEngine(fake_soql(), batch_size=0)


class TestDegradation:
    """Partial and total failure."""

    @pytest.mark.asyncio
    async def test_failing_subquery_only_blanks_its_signal(self, make_opportunity, fake_soql):
        opp = make_opportunity("006A", account_id="001A")
        client = fake_soql(
            activity={
                ("Task", "006A"): "2024-01-10T09:00:00.000+0000",
                ("Event", "001A"): "2024-02-01T09:00:00.000+0000",
            },
            fail=lambda soql: "FROM Event" in soql and "001A" in soql,
        )

        [merged] = await ActivityMergeEngine(client).attach_last_contact_dates([opp])

        assert merged.last_contact_date == "2024-01-10T09:00:00.000Z"

    @pytest.mark.asyncio
    async def test_unreadable_response_only_blanks_its_signal(self, make_opportunity):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/services/Soap/u/"):
                return httpx.Response(200, text=LOGIN_OK)
            soql = request.url.params["q"]
            if "FROM Event" in soql:
                return httpx.Response(200, text="<html>maintenance</html>")
            if "FROM Task" in soql and "006A" in soql:
                return httpx.Response(200, json={
                    "done": True,
                    "records": [{"WhatId": "006A", "LastTaskDate": "2024-05-01T10:00:00.000+0000"}],
                })
            return httpx.Response(200, json={"done": True, "records": []})

        client = SalesforceClient(
            username="ops@example.com",
            password="pw",
            security_token="",
            transport=httpx.MockTransport(handler),
        )
        opp = make_opportunity("006A", account_id="001A", last_modified_date="2024-01-01T00:00:00.000+0000")

        [merged] = await ActivityMergeEngine(client).attach_last_contact_dates([opp])

        assert merged.last_contact_date == "2024-05-01T10:00:00.000Z"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_failure_falls_back_for_all(self, make_opportunity):
        class ExplodingClient:
            async def query(self, soql):
                raise RuntimeError("connection reset")

        opps = [
            make_opportunity("006A", last_modified_date="2024-01-16T09:00:00.000+0000"),
            make_opportunity("006B", last_modified_date=None),
        ]

        merged = await ActivityMergeEngine(ExplodingClient()).attach_last_contact_dates(opps)

        assert [m.last_contact_date for m in merged] == ["2024-01-16T09:00:00.000+0000", None]

    @pytest.mark.asyncio
    async def test_timeout_falls_back_for_all(self, make_opportunity):
        class SlowClient:
            async def query(self, soql):
                await asyncio.sleep(5)
                return []

        opp = make_opportunity("006A", last_modified_date="2024-01-16T09:00:00.000+0000")

        [merged] = await ActivityMergeEngine(SlowClient(), timeout=0.05).attach_last_contact_dates([opp])

        assert merged.last_contact_date == "2024-01-16T09:00:00.000+0000"


class TestDatetimeHelpers:
    def test_parse_offset_without_colon(self):
        parsed = parse_sf_datetime("2024-01-15T10:30:00.000+0000")
        assert parsed is not None
        assert parsed.utcoffset().total_seconds() == 0

    def test_parse_non_utc_offset_normalized_on_format(self):
        parsed = parse_sf_datetime("2024-01-15T10:30:00.000-0500")
        assert format_utc(parsed) == "2024-01-15T15:30:00.000Z"

    def test_parse_z_suffix(self):
        assert format_utc(parse_sf_datetime("2024-01-15T10:30:00Z")) == "2024-01-15T10:30:00.000Z"

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_parse_rejects_garbage(self, value):
        assert parse_sf_datetime(value) is None
