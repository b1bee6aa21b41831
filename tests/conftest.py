"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from layer_peek.core.transport import Transport
from layer_peek.core.types import RegistryConfig
from layer_peek.utils.reference import parse_reference
from tests.helpers import REPOSITORY, FakeRegistry


@pytest.fixture
def fake_registry():
    """Fake registry with no images; tests add what they need."""
    return FakeRegistry()


@pytest_asyncio.fixture
async def registry_host(fake_registry):
    """Serve the fake registry and return its host:port."""
    server = TestServer(fake_registry.app, host="127.0.0.1")
    await server.start_server()
    yield f"{server.host}:{server.port}"
    await server.close()


@pytest.fixture
def reference(registry_host):
    return parse_reference(f"{registry_host}/{REPOSITORY}:latest")


@pytest.fixture
def config():
    return RegistryConfig(probe_timeout=5.0)


@pytest_asyncio.fixture
async def transport(reference, config):
    """Authenticated transport bound to the fake registry."""
    async with Transport(reference, config) as transport:
        yield transport


def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
