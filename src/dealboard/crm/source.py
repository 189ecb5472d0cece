"""Remote record source -- the opportunity list as the sync sees it.

One SOQL query, newest modification first, capped at a fixed size, with the
exclusion policy applied before anything is written locally.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from src.dealboard.crm.schemas import OPPORTUNITY_FIELDS, RawOpportunity

logger = structlog.get_logger(__name__)

EXCLUDED_NAME_TERMS: tuple[str, ...] = ("upgrade", "design")


class SoqlClient(Protocol):
    async def query(self, soql: str) -> list[dict]: ...


def is_excluded(opp: RawOpportunity, excluded_owners: list[str]) -> bool:
    """True if the opportunity falls under the exclusion policy.

    Name terms and owner fragments match case-insensitively as substrings.
    """
    name = (opp.name or "").lower()
    if any(term in name for term in EXCLUDED_NAME_TERMS):
        return True
    owner = (opp.owner_name or "").lower()
    return any(fragment.lower() in owner for fragment in excluded_owners if fragment)


class RemoteRecordSource:
    """Fetches the opportunity list the sync mirrors.

    Args:
        client: Anything with an async ``query(soql)``; normally SalesforceClient.
        excluded_owners: Owner name fragments whose opportunities are dropped.
        limit: Maximum records requested.
    """

    def __init__(
        self,
        client: SoqlClient,
        excluded_owners: list[str] | None = None,
        limit: int = 1000,
    ) -> None:
        self._client = client
        self._excluded_owners = list(excluded_owners or [])
        self._limit = limit

    @property
    def client(self) -> SoqlClient:
        return self._client

    def build_query(self) -> str:
        return (
            f"SELECT {', '.join(OPPORTUNITY_FIELDS)} FROM Opportunity "
            f"ORDER BY LastModifiedDate DESC LIMIT {self._limit}"
        )

    async def fetch_opportunities(self) -> list[RawOpportunity]:
        """Fetch opportunities and apply the exclusion policy.

        Any remote failure propagates unchanged; there are no partial results.
        """
        records = await self._client.query(self.build_query())
        fetched = [RawOpportunity.from_salesforce(record) for record in records]
        kept = [opp for opp in fetched if not is_excluded(opp, self._excluded_owners)]
        logger.info(
            "source.opportunities_fetched",
            fetched=len(fetched),
            kept=len(kept),
            excluded=len(fetched) - len(kept),
        )
        return kept
