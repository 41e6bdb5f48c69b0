"""
Pytest configuration and fixtures
"""

import pytest

from ingestion.destinations import DestinationRegistry, RfcDestination
from tests.fakes import FakeRfcConnection, FakeSource


@pytest.fixture
def sample_records():
    """100 records numbered 0..99"""
    return [{"id": i} for i in range(100)]


@pytest.fixture
def fake_source(sample_records):
    return FakeSource(sample_records)


@pytest.fixture
def sap_destination():
    return RfcDestination(
        name="S4H",
        client="100",
        user="EXTRACT_USER",
        passwd="s3cret",
        ashost="sap.example.com",
        sysnr="00"
    )


@pytest.fixture
def make_registry(sap_destination):
    """
    Build a DestinationRegistry whose factory always returns the given connection.

    The connection parameters of every connect() are kept in registry.opened.
    """
    def _make(connection: FakeRfcConnection) -> DestinationRegistry:
        opened = []

        def factory(**params):
            opened.append(params)
            return connection

        registry = DestinationRegistry(connection_factory=factory)
        registry.register(sap_destination)
        registry.opened = opened
        return registry

    return _make
