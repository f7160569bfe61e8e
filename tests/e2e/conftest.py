"""
Fixtures for the X.509 transport matrix suite.

One FixtureManager serves the whole session. Every test body runs inside the
session's execution gate.
"""

import copy

import pytest
import pytest_asyncio

from src.core.config import ConfigurationError, load_config
from src.core.errors import FixtureInitializationError
from src.core.gate import ExecutionGate
from src.core.logging import initialize_logging, shutdown_logging
from src.services.fixture import FixtureManager
from src.services.scenarios import RoundTripRunner


@pytest.fixture(scope="session")
def suite_config(request):
    """Layered configuration, with --backend taking precedence."""
    try:
        config = copy.deepcopy(load_config())
    except ConfigurationError as e:
        pytest.exit(f"Invalid suite configuration: {e}", returncode=3)

    backend = request.config.getoption("--backend")
    if backend:
        config['hub']['backend'] = backend

    if config['hub']['backend'] == 'loopback':
        # In-process hub delivers immediately; keep timeout scenarios short
        config['verification'].update({
            'ceiling_seconds': 1.0,
            'poll_wait_seconds': 0.1,
            'priming_wait_seconds': 0.1,
        })

    logging_config = dict(config['logging'])
    logging_config['console'] = False
    initialize_logging({'logging': logging_config})
    yield config
    shutdown_logging()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def hub_fixture(suite_config):
    """Suite-wide fixture manager; a failure here aborts the whole session."""
    manager = FixtureManager(suite_config)
    try:
        await manager.initialize()
    except FixtureInitializationError as e:
        pytest.exit(str(e), returncode=3)
    yield manager
    await manager.teardown()


@pytest.fixture(scope="session")
def execution_gate():
    return ExecutionGate(capacity=1)


@pytest_asyncio.fixture(loop_scope="session", autouse=True)
async def serialized(execution_gate, request):
    """Admit one test body at a time."""
    await execution_gate.acquire(request.node.nodeid)
    yield
    execution_gate.release(request.node.nodeid)


@pytest.fixture
def runner(hub_fixture, suite_config):
    return RoundTripRunner(hub_fixture.environment, suite_config)


@pytest.fixture
def loopback_only(hub_fixture):
    if hub_fixture.environment.backend.name != 'loopback':
        pytest.skip("requires the loopback backend")
    return hub_fixture.environment.backend.hub
