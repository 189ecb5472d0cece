"""Async Salesforce client: SOAP partner login plus REST SOQL queries.

Provides SalesforceClient with:
- Lazy username/password+token login, performed once per process and
  shared by concurrent callers (asyncio.Lock). The session is never
  refreshed; an expired session surfaces as AuthenticationError.
- query(): SOQL over the REST API, following nextRecordsUrl pagination
- Retry on transient transport failures (tenacity, 3 attempts, exponential
  backoff 1-10s) matching the pattern used by the other HTTP clients

HTTP failures are translated into the domain taxonomy from
src.dealboard.core.errors so callers never see httpx exceptions.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit
from xml.etree import ElementTree
from xml.sax.saxutils import escape

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.dealboard.core.errors import AuthenticationError, QueryError

logger = structlog.get_logger(__name__)

_PARTNER_NS = "urn:partner.soap.sforce.com"
_SOAP_FAULT = "{http://schemas.xmlsoap.org/soap/envelope/}Fault"

_LOGIN_ENVELOPE = """<?xml version="1.0" encoding="utf-8" ?>
<env:Envelope xmlns:xsd="http://www.w3.org/2001/XMLSchema"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
  <env:Body>
    <n1:login xmlns:n1="urn:partner.soap.sforce.com">
      <n1:username>{username}</n1:username>
      <n1:password>{password}</n1:password>
    </n1:login>
  </env:Body>
</env:Envelope>"""

_transport_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


@dataclass(frozen=True)
class SalesforceSession:
    session_id: str
    instance_url: str


class SalesforceClient:
    """Authenticated SOQL access to one Salesforce org.

    Args:
        username: Salesforce username.
        password: Account password.
        security_token: Token appended to the password for API login.
        login_url: Login host, e.g. https://login.salesforce.com or a sandbox.
        api_version: REST/SOAP API version without the "v" prefix.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject httpx.MockTransport).
    """

    def __init__(
        self,
        username: str,
        password: str,
        security_token: str = "",
        login_url: str = "https://login.salesforce.com",
        api_version: str = "58.0",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._username = username
        self._password = password
        self._security_token = security_token
        self._login_url = login_url.rstrip("/")
        self._api_version = api_version
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._session: SalesforceSession | None = None
        self._login_lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    # ── Authentication ─────────────────────────────────────────────────────

    async def session(self) -> SalesforceSession:
        """Return the cached session, logging in on first use."""
        if self._session is not None:
            return self._session
        async with self._login_lock:
            if self._session is None:
                self._session = await self._login()
        return self._session

    async def _login(self) -> SalesforceSession:
        body = _LOGIN_ENVELOPE.format(
            username=escape(self._username),
            password=escape(self._password + self._security_token),
        )
        try:
            response = await self._post_login(body)
        except httpx.TransportError as exc:
            raise AuthenticationError(
                f"Login request failed: {exc}", operation="login", cause=exc
            ) from exc

        try:
            root = ElementTree.fromstring(response.text)
        except ElementTree.ParseError as exc:
            raise AuthenticationError(
                f"Unreadable login response (HTTP {response.status_code})",
                operation="login",
                cause=exc,
            ) from exc

        fault = root.find(f".//{_SOAP_FAULT}")
        if fault is not None or response.status_code >= 400:
            message = root.findtext(".//faultstring") or f"HTTP {response.status_code}"
            logger.error("salesforce.login_failed", username=self._username, error=message)
            raise AuthenticationError(message, operation="login")

        session_id = root.findtext(f".//{{{_PARTNER_NS}}}sessionId")
        server_url = root.findtext(f".//{{{_PARTNER_NS}}}serverUrl")
        if not session_id or not server_url:
            raise AuthenticationError("Login response missing session", operation="login")

        parts = urlsplit(server_url)
        instance_url = f"{parts.scheme}://{parts.netloc}"
        logger.info("salesforce.logged_in", instance_url=instance_url)
        return SalesforceSession(session_id=session_id, instance_url=instance_url)

    @_transport_retry
    async def _post_login(self, body: str) -> httpx.Response:
        return await self._http.post(
            f"{self._login_url}/services/Soap/u/{self._api_version}",
            content=body.encode("utf-8"),
            headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": "login"},
        )

    # ── Queries ────────────────────────────────────────────────────────────

    async def query(self, soql: str) -> list[dict[str, Any]]:
        """Run a SOQL query and return every record across all pages.

        Raises:
            AuthenticationError: Login failed or the session was rejected.
            QueryError: Salesforce rejected the query or the transport failed.
        """
        session = await self.session()
        url = f"{session.instance_url}/services/data/v{self._api_version}/query"
        params: dict[str, str] | None = {"q": soql}
        records: list[dict[str, Any]] = []

        while url:
            payload = await self._get_json(url, params, session)
            records.extend(payload.get("records", []))
            next_url = payload.get("nextRecordsUrl")
            url = f"{session.instance_url}{next_url}" if next_url and not payload.get("done", True) else ""
            params = None

        logger.debug("salesforce.query_complete", records=len(records))
        return records

    async def _get_json(
        self,
        url: str,
        params: dict[str, str] | None,
        session: SalesforceSession,
    ) -> dict[str, Any]:
        try:
            response = await self._get(url, params, session)
        except httpx.TransportError as exc:
            raise QueryError(
                f"Query request failed: {exc}", operation="query", cause=exc
            ) from exc

        if response.status_code == 401:
            raise AuthenticationError("Session rejected by Salesforce", operation="query")
        if response.status_code >= 400:
            error_code, message = _error_details(response)
            logger.warning(
                "salesforce.query_failed",
                status_code=response.status_code,
                error_code=error_code,
                error=message,
            )
            raise QueryError(
                message,
                operation="query",
                error_code=error_code,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except (ValueError, httpx.DecodingError) as exc:
            logger.warning("salesforce.query_unreadable", status_code=response.status_code, error=str(exc))
            raise QueryError(
                f"Unreadable query response: {exc}", operation="query", cause=exc
            ) from exc

    @_transport_retry
    async def _get(
        self,
        url: str,
        params: dict[str, str] | None,
        session: SalesforceSession,
    ) -> httpx.Response:
        return await self._http.get(
            url,
            params=params,
            headers={"Authorization": f"Bearer {session.session_id}"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    """Extract (errorCode, message) from a REST error body."""
    try:
        body = response.json()
    except ValueError:
        return None, f"HTTP {response.status_code}: {response.text[:200]}"
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return body[0].get("errorCode"), body[0].get("message", f"HTTP {response.status_code}")
    return None, f"HTTP {response.status_code}"


def soql_quote(value: str) -> str:
    """Quote a string literal for SOQL."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
