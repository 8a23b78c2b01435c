"""
Tests for HL7 v2.x message router.
"""

import pytest

from interop_gateway.hl7.message_parser import HL7MessageParser
from interop_gateway.hl7.message_router import HL7MessageRouter

from samples import ADT_EXAMPLE, ORU_EXAMPLE


@pytest.fixture
def router():
    """Create HL7 message router instance."""
    return HL7MessageRouter()


@pytest.fixture
def parser():
    """Create HL7 message parser instance."""
    return HL7MessageParser()


def test_register_handler(router):
    """Test registering a message handler."""
    router.register_handler("ADT^A01", lambda message: "processed")

    assert "ADT^A01" in router.get_supported_types()


def test_route_exact_match(router, parser):
    """Test routing with exact message type match."""
    results = []

    def adt_handler(message):
        results.append(message.message_id)
        return "ADT result"

    router.register_handler("ADT^A01", adt_handler)

    assert router.route(parser.parse(ADT_EXAMPLE)) == "ADT result"
    assert results == ["ADT001"]


def test_route_wildcard_match(router, parser):
    """Test routing with wildcard message type."""
    router.register_handler("ORU^*", lambda message: "ORU result")

    assert router.route(parser.parse(ORU_EXAMPLE)) == "ORU result"


def test_exact_match_wins_over_wildcard(router, parser):
    router.register_handler("ADT^*", lambda message: "wildcard")
    router.register_handler("ADT^A01", lambda message: "exact")

    assert router.route(parser.parse(ADT_EXAMPLE)) == "exact"


def test_route_no_handler(router, parser):
    """Test routing when no handler is registered."""
    router.register_handler("ADT^*", lambda message: "ADT")

    assert router.route(parser.parse(ORU_EXAMPLE)) is None
