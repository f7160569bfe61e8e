"""
Fixture Manager

Suite-scoped setup and teardown of the shared backend state: connection
string, registry handle and host name. Everything it sets up is read-only
for the tests that share it.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..backends.factory import Backend, create_backend
from ..core.config import ConfigurationError
from ..core.connection_string import get_host_name
from ..core.errors import FixtureInitializationError, HubProbeError
from ..core.interfaces import RegistryClient
from ..core.logging import get_logger
from .provisioner import remove_stale_devices


@dataclass(frozen=True)
class HubEnvironment:
    """Process-wide state shared by every test in the suite"""
    connection_string: str
    registry: RegistryClient
    host_name: str
    backend: Backend


class FixtureManager:
    """Initializes the suite fixture once and tears it down once."""

    def __init__(self, config: Dict[str, Any], backend: Optional[Backend] = None):
        self.config = config
        self.backend = backend
        self.environment: Optional[HubEnvironment] = None
        self._torn_down = False
        self.logger = get_logger('fixture')

    async def initialize(self) -> HubEnvironment:
        """
        Build the shared environment.

        Raises:
            FixtureInitializationError: On any failure; the suite cannot run
        """
        if self.environment is not None:
            return self.environment

        registry: Optional[RegistryClient] = None
        try:
            backend = self.backend or create_backend(self.config)
            connection_string = backend.connection_string
            host_name = get_host_name(connection_string)
            credential = backend.certificate_provider().get_certificate_with_private_key()
            registry = backend.create_registry()

            if self.config.get('fixture', {}).get('sweep_stale_devices', False):
                prefix = self.config.get('device', {}).get('prefix', '')
                await remove_stale_devices(prefix, registry, self.logger)

        except (ConfigurationError, HubProbeError, OSError) as e:
            self.logger.critical(f"Suite fixture initialization failed: {e}", exc_info=True)
            if registry is not None:
                await self._close_quietly(registry)
            raise FixtureInitializationError(f"Suite fixture initialization failed: {e}") from e

        self.backend = backend
        self.environment = HubEnvironment(
            connection_string=connection_string,
            registry=registry,
            host_name=host_name,
            backend=backend,
        )
        self.logger.info(
            f"Suite fixture ready - backend={backend.name}, host={host_name}, "
            f"thumbprint={credential.thumbprint}"
        )
        return self.environment

    async def _close_quietly(self, registry: RegistryClient) -> None:
        try:
            await registry.close()
        except (HubProbeError, OSError) as close_error:
            self.logger.warning(f"Could not close registry after failed setup: {close_error}")

    async def teardown(self, registry: Optional[RegistryClient] = None) -> None:
        """Release the registry handle. Safe to call more than once."""
        if self._torn_down:
            return
        registry = registry or (self.environment.registry if self.environment else None)
        if registry is not None:
            await registry.close()
        self._torn_down = True
        self.logger.info("Suite fixture torn down")
