"""Pydantic models for records read from Salesforce."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

# Fields selected from Opportunity, in query order.
OPPORTUNITY_FIELDS: tuple[str, ...] = (
    "Id",
    "Name",
    "StageName",
    "Amount",
    "CloseDate",
    "CreatedDate",
    "LastModifiedDate",
    "AccountId",
    "Account.Name",
    "Account.Phone",
    "Account.PersonMobilePhone",
    "Phone__c",
    "Owner.Name",
    "NextStep",
    "Description",
)


def _related(record: dict[str, Any], relation: str, field: str) -> Any:
    related = record.get(relation)
    if not isinstance(related, dict):
        return None
    return related.get(field)


class RawOpportunity(BaseModel):
    """An opportunity as fetched, before local annotations.

    ``last_contact_date`` is absent until the activity merge has run.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    stage_name: str | None = None
    amount: float | None = None
    close_date: str | None = None
    created_date: str | None = None
    last_modified_date: str | None = None
    account_id: str | None = None
    account_name: str | None = None
    account_phone: str | None = None
    account_person_mobile_phone: str | None = None
    opportunity_phone: str | None = None
    owner_name: str | None = None
    next_step: str | None = None
    description: str | None = None
    last_contact_date: str | None = None

    @classmethod
    def from_salesforce(cls, record: dict[str, Any]) -> RawOpportunity:
        """Build from a REST query record (relationship fields are nested dicts)."""
        return cls(
            id=record["Id"],
            name=record.get("Name"),
            stage_name=record.get("StageName"),
            amount=record.get("Amount"),
            close_date=record.get("CloseDate"),
            created_date=record.get("CreatedDate"),
            last_modified_date=record.get("LastModifiedDate"),
            account_id=record.get("AccountId"),
            account_name=_related(record, "Account", "Name"),
            account_phone=_related(record, "Account", "Phone"),
            account_person_mobile_phone=_related(record, "Account", "PersonMobilePhone"),
            opportunity_phone=record.get("Phone__c"),
            owner_name=_related(record, "Owner", "Name"),
            next_step=record.get("NextStep"),
            description=record.get("Description"),
        )
