"""
Global pytest configuration and fixtures for HubProbe testing.
"""
import copy

import pytest
import pytest_asyncio

from src.backends.factory import LoopbackBackend
from src.backends.loopback import LoopbackHub
from src.core.config import DEFAULTS
from src.services.fixture import FixtureManager
from tests.mocks.hub_mocks import FakeHubService


def pytest_addoption(parser):
    parser.addoption(
        "--backend",
        action="store",
        default=None,
        choices=("loopback", "iothub"),
        help="Backend for the transport matrix suite (overrides hub.backend)",
    )


@pytest.fixture
def test_config():
    """Provide test configuration with a fast delivery window."""
    config = copy.deepcopy(DEFAULTS)
    config["device"]["prefix"] = "E2E_X509_Test_"
    config["verification"].update({
        "ceiling_seconds": 0.5,
        "poll_wait_seconds": 0.05,
        "priming_wait_seconds": 0.05,
    })
    config["logging"]["level"] = "DEBUG"
    return config


@pytest.fixture
def loopback_hub():
    """Fresh in-memory hub."""
    return LoopbackHub()


@pytest.fixture
def loopback_backend(loopback_hub):
    return LoopbackBackend(hub=loopback_hub)


@pytest.fixture
def credential(loopback_backend):
    return loopback_backend.certificate_provider().get_certificate_with_private_key()


@pytest_asyncio.fixture
async def hub_environment(test_config, loopback_backend):
    """Initialized suite environment over the loopback backend."""
    manager = FixtureManager(test_config, backend=loopback_backend)
    environment = await manager.initialize()
    yield environment
    await manager.teardown(environment.registry)


@pytest_asyncio.fixture
async def hub_service():
    """Fake hub REST service on a local port."""
    service = FakeHubService()
    await service.start()
    yield service
    await service.close()
