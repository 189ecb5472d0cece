"""Tests for SalesforceClient using httpx.MockTransport.

Covers login caching, concurrent first use, login faults, query error
translation, and nextRecordsUrl pagination. No network access.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from src.dealboard.core.errors import AuthenticationError, QueryError
from src.dealboard.crm.salesforce import SalesforceClient, soql_quote

LOGIN_OK = """<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/"
    xmlns="urn:partner.soap.sforce.com">
  <soapenv:Body>
    <loginResponse>
      <result>
        <serverUrl>https://na1.my.salesforce.com/services/Soap/u/58.0/00D000000000001</serverUrl>
        <sessionId>SESSION-123</sessionId>
      </result>
    </loginResponse>
  </soapenv:Body>
</soapenv:Envelope>"""

LOGIN_FAULT = """<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/">
  <soapenv:Body>
    <soapenv:Fault>
      <faultcode>INVALID_LOGIN</faultcode>
      <faultstring>INVALID_LOGIN: Invalid username, password, security token; or user locked out.</faultstring>
    </soapenv:Fault>
  </soapenv:Body>
</soapenv:Envelope>"""


class Recorder:
    """MockTransport handler that records requests and routes by path."""

    def __init__(self, query_responses: list[httpx.Response] | None = None, login: httpx.Response | None = None):
        self.requests: list[httpx.Request] = []
        self.login_calls = 0
        self._query_responses = list(query_responses or [])
        self._login = login or httpx.Response(200, text=LOGIN_OK)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.startswith("/services/Soap/u/"):
            self.login_calls += 1
            return self._login
        if self._query_responses:
            return self._query_responses.pop(0)
        return httpx.Response(200, json={"totalSize": 0, "done": True, "records": []})


def _client(handler: Recorder) -> SalesforceClient:
    return SalesforceClient(
        username="ops@example.com",
        password="hunter2",
        security_token="TOKEN",
        transport=httpx.MockTransport(handler),
    )


class TestLogin:
    """Session establishment and caching."""

    @pytest.mark.asyncio
    async def test_login_sends_password_with_token(self):
        handler = Recorder()
        client = _client(handler)

        await client.query("SELECT Id FROM Opportunity")

        login_request = handler.requests[0]
        assert login_request.url.path == "/services/Soap/u/58.0"
        body = login_request.content.decode()
        assert "<n1:username>ops@example.com</n1:username>" in body
        assert "<n1:password>hunter2TOKEN</n1:password>" in body
        await client.aclose()

    @pytest.mark.asyncio
    async def test_session_cached_across_queries(self):
        handler = Recorder()
        client = _client(handler)

        await client.query("SELECT Id FROM Opportunity")
        await client.query("SELECT Id FROM Task")

        assert handler.login_calls == 1
        query_requests = [r for r in handler.requests if "/query" in r.url.path]
        assert len(query_requests) == 2
        assert all(r.headers["Authorization"] == "Bearer SESSION-123" for r in query_requests)
        assert all(r.url.host == "na1.my.salesforce.com" for r in query_requests)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_first_use_logs_in_once(self):
        handler = Recorder()
        client = _client(handler)

        await asyncio.gather(*(client.query("SELECT Id FROM Opportunity") for _ in range(5)))

        assert handler.login_calls == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_login_fault_raises_authentication_error(self):
        handler = Recorder(login=httpx.Response(500, text=LOGIN_FAULT))
        client = _client(handler)

        with pytest.raises(AuthenticationError) as exc_info:
            await client.query("SELECT Id FROM Opportunity")

        assert "INVALID_LOGIN" in str(exc_info.value)
        assert not client.is_authenticated
        await client.aclose()


class TestQuery:
    """Query execution, pagination and error translation."""

    @pytest.mark.asyncio
    async def test_follows_next_records_url(self):
        handler = Recorder(query_responses=[
            httpx.Response(200, json={
                "totalSize": 3,
                "done": False,
                "nextRecordsUrl": "/services/data/v58.0/query/01gD0000002HU6KIAW-2000",
                "records": [{"Id": "006A"}, {"Id": "006B"}],
            }),
            httpx.Response(200, json={"totalSize": 3, "done": True, "records": [{"Id": "006C"}]}),
        ])
        client = _client(handler)

        records = await client.query("SELECT Id FROM Opportunity")

        assert [r["Id"] for r in records] == ["006A", "006B", "006C"]
        assert handler.requests[-1].url.path == "/services/data/v58.0/query/01gD0000002HU6KIAW-2000"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_soql_sent_as_q_parameter(self):
        handler = Recorder()
        client = _client(handler)

        await client.query("SELECT Id FROM Opportunity LIMIT 5")

        query_request = handler.requests[-1]
        assert query_request.url.path == "/services/data/v58.0/query"
        assert query_request.url.params["q"] == "SELECT Id FROM Opportunity LIMIT 5"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_bad_request_raises_query_error(self):
        handler = Recorder(query_responses=[
            httpx.Response(400, json=[{"message": "unexpected token: FORM", "errorCode": "MALFORMED_QUERY"}]),
        ])
        client = _client(handler)

        with pytest.raises(QueryError) as exc_info:
            await client.query("SELECT Id FORM Opportunity")

        assert exc_info.value.error_code == "MALFORMED_QUERY"
        assert exc_info.value.status_code == 400
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rejected_session_raises_authentication_error(self):
        handler = Recorder(query_responses=[
            httpx.Response(401, json=[{"message": "Session expired", "errorCode": "INVALID_SESSION_ID"}]),
        ])
        client = _client(handler)

        with pytest.raises(AuthenticationError):
            await client.query("SELECT Id FROM Opportunity")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body_raises_query_error(self):
        handler = Recorder(query_responses=[
            httpx.Response(200, text="<html>Down for maintenance</html>"),
        ])
        client = _client(handler)

        with pytest.raises(QueryError) as exc_info:
            await client.query("SELECT Id FROM Opportunity")

        assert exc_info.value.operation == "query"
        assert exc_info.value.cause is not None
        await client.aclose()


def test_soql_quote_escapes_quotes():
    assert soql_quote("006A") == "'006A'"
    assert soql_quote("O'Brien") == "'O\\'Brien'"
