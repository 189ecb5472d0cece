"""Tests for the opportunity naming convention parser."""

import pytest

from src.dealboard.crm.naming import NO_LOCATION, parse_opportunity_name


@pytest.mark.parametrize(
    "name,customer,location",
    [
        ("Jane Smith - TX", "Jane Smith", "TX"),
        ("Jane Smith-TX", "Jane Smith", "TX"),
        ("Bob Jones - San Diego", "Bob Jones", "San Diego"),
        ("Mary-Kate Olsen - NY", "Mary-Kate Olsen", "NY"),
    ],
)
def test_customer_and_location(name, customer, location):
    parsed = parse_opportunity_name(name)

    assert parsed.customer_name == customer
    assert parsed.location == location


def test_preferences_are_everything_after_first_comma():
    parsed = parse_opportunity_name("Jane Smith - TX, white oak")

    assert parsed.location == "TX"
    assert parsed.preferences == "white oak"


def test_no_convention():
    parsed = parse_opportunity_name("Kitchen remodel")

    assert parsed.customer_name == "Kitchen remodel"
    assert parsed.location == NO_LOCATION
    assert parsed.preferences == ""


def test_location_with_digits_is_not_a_location():
    parsed = parse_opportunity_name("Acme - Unit 4")

    assert parsed.location == NO_LOCATION
    assert parsed.customer_name == "Acme - Unit 4"


@pytest.mark.parametrize("name", [None, ""])
def test_missing_name(name):
    parsed = parse_opportunity_name(name)

    assert parsed.customer_name == ""
    assert parsed.location == NO_LOCATION
    assert parsed.preferences == ""
