"""Opportunity naming convention parser.

Sales reps name opportunities "<Customer> - <Location>, <preference>, ...",
e.g. "Jane Smith - TX, white oak, budget 40k". The first comma-separated part
carries customer and location; the rest are free-form customer preferences.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_CUSTOMER_LOCATION = re.compile(r"^(.+?)\s*-\s*([A-Z]{2}|[A-Za-z\s]+)$")

NO_LOCATION = "N/A"


@dataclass(frozen=True)
class ParsedName:
    customer_name: str
    location: str
    preferences: str


def parse_opportunity_name(name: str | None) -> ParsedName:
    """Split an opportunity name into customer, location and preferences.

    Names that do not follow the convention yield the whole first part as the
    customer name and "N/A" as the location. Missing names parse as empty.
    """
    parts = (name or "").split(",")
    first = parts[0].strip()

    match = _CUSTOMER_LOCATION.match(first)
    if match:
        customer_name = match.group(1).strip()
        location = match.group(2).strip()
    else:
        customer_name = first
        location = NO_LOCATION

    preferences = ", ".join(parts[1:]).strip() if len(parts) > 1 else ""
    return ParsedName(customer_name=customer_name, location=location, preferences=preferences)
