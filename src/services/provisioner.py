"""
Device Provisioner

Creates and destroys X.509-authenticated device identities, one per test.
Removal runs in a guaranteed-release block and never masks a fault that is
already propagating.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Tuple

from ..core.errors import CertificateError, CleanupFailure, ProvisioningFailure, RegistryError
from ..core.interfaces import CertificateProvider, HostTuple, RegistryClient
from ..core.logging import get_logger
from ..models.device import DeviceIdentity


class DeviceProvisioner:
    """Registers and removes per-test device identities."""

    def __init__(self, certificate_provider: CertificateProvider):
        self.certificate_provider = certificate_provider
        self.logger = get_logger('provisioner')
        self.created = 0
        self.removed = 0

    @staticmethod
    def generate_device_id(prefix: str) -> str:
        return f"{prefix}{uuid.uuid4()}"

    async def create(self, prefix: str, host_name: str,
                     registry: RegistryClient) -> Tuple[str, HostTuple]:
        """
        Register a new device identity bound to the suite certificate.

        Args:
            prefix: Device id prefix shared by the suite
            host_name: Hub host name the device will connect to
            registry: Registry handle from the fixture

        Returns:
            (device id, (device id, host name))

        Raises:
            ProvisioningFailure: If the certificate or the registry call fails
        """
        identity = await self._register(prefix, host_name, registry)
        return identity.device_id, identity.as_host_tuple()

    async def _register(self, prefix: str, host_name: str,
                        registry: RegistryClient) -> DeviceIdentity:
        device_id = self.generate_device_id(prefix)

        try:
            credential = self.certificate_provider.get_certificate_with_private_key()
            registered = await registry.create_device_with_certificate(device_id, credential)
        except (CertificateError, RegistryError, OSError) as e:
            self.logger.error(f"Failed to provision device {device_id}: {e}")
            raise ProvisioningFailure(f"Could not create device {device_id}: {e}",
                                      device_id=device_id) from e

        self.created += 1
        self.logger.info(
            f"Provisioned X.509 device - "
            f"device_id={device_id}, "
            f"host={host_name}, "
            f"thumbprint={registered.thumbprint}"
        )
        return DeviceIdentity(device_id=device_id, host_name=host_name,
                              thumbprint=registered.thumbprint)

    async def remove(self, device_id: str, registry: RegistryClient) -> None:
        """
        Delete a device identity.

        Raises:
            CleanupFailure: If the registry call fails
        """
        try:
            await registry.delete_device(device_id)
        except (RegistryError, OSError) as e:
            raise CleanupFailure(f"Could not delete device {device_id}: {e}",
                                 resource=device_id) from e

        self.removed += 1
        self.logger.info(f"Removed device {device_id}")

    @asynccontextmanager
    async def provisioned(self, prefix: str, host_name: str,
                          registry: RegistryClient) -> AsyncIterator[DeviceIdentity]:
        """Create a device for the duration of the block, removing it exactly once."""
        identity = await self._register(prefix, host_name, registry)
        try:
            yield identity
        except BaseException:
            await self.remove_quietly(identity.device_id, registry)
            raise
        else:
            await self.remove(identity.device_id, registry)

    async def remove_quietly(self, device_id: str, registry: RegistryClient) -> None:
        """Remove a device while another fault propagates; log instead of raising."""
        try:
            await self.remove(device_id, registry)
        except CleanupFailure as e:
            self.logger.error(
                f"Cleanup failed while another fault was propagating: {e}",
                exc_info=True
            )


async def remove_stale_devices(prefix: str, registry: RegistryClient,
                               logger=None) -> int:
    """Delete devices left behind by an earlier aborted run. Returns the count."""
    logger = logger or get_logger('provisioner')
    removed = 0
    for device_id in await registry.list_devices():
        if not device_id.startswith(prefix):
            continue
        try:
            await registry.delete_device(device_id)
            removed += 1
        except RegistryError as e:
            logger.warning(f"Could not delete stale device {device_id}: {e}")
    if removed:
        logger.info(f"Removed {removed} stale devices with prefix {prefix}")
    return removed
