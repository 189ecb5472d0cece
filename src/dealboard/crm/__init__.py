"""Salesforce integration -- the read-only remote side of the sync.

Provides:
- SalesforceClient: SOAP login + REST SOQL over httpx, session cached per process
- RemoteRecordSource: the opportunity query with the exclusion policy applied
- ActivityMergeEngine: last-contact derivation from Task/Event activity
- RawOpportunity: a fetched opportunity record
- parse_opportunity_name: customer / location / preferences naming convention
"""

from src.dealboard.crm.activity import ActivityMergeEngine
from src.dealboard.crm.naming import ParsedName, parse_opportunity_name
from src.dealboard.crm.salesforce import SalesforceClient
from src.dealboard.crm.schemas import RawOpportunity
from src.dealboard.crm.source import RemoteRecordSource

__all__ = [
    "ActivityMergeEngine",
    "ParsedName",
    "RawOpportunity",
    "RemoteRecordSource",
    "SalesforceClient",
    "parse_opportunity_name",
]
