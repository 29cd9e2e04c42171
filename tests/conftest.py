"""Pytest configuration and shared fixtures."""

from typing import List

import pytest

from fakes import SBD_XML, FakeQueue, FakeRunner, MemoryBlobBackend
from oxalis_outbound.settings import Settings


@pytest.fixture
def events() -> List[tuple]:
    """Shared, ordered record of side effects across all fakes."""
    return []


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        connection_string="DefaultEndpointsProtocol=https;AccountName=acct;AccountKey=c2VjcmV0;",
        cert_path="/certs/peppol.p12",
        oxalis_standalone="sh /oxalis/bin-standalone/run-docker.sh",
        scratch_dir=tmp_path / "scratch",
        logs_dir=tmp_path / "logs",
    )


@pytest.fixture
def queue(events) -> FakeQueue:
    return FakeQueue(events)


@pytest.fixture
def blobs(events) -> MemoryBlobBackend:
    backend = MemoryBlobBackend(events)
    backend.blobs[("outbound", "2024/invoice-1.xml")] = SBD_XML
    return backend


@pytest.fixture
def runner(events) -> FakeRunner:
    return FakeRunner(events)
