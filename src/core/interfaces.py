"""
Collaborator Interfaces for HubProbe

The registry service, device and service messaging clients, and the
certificate provider are consumed through these narrow interfaces. Backends
(loopback, iothub) supply the implementations.
"""

from typing import List, Optional, Protocol, Tuple, runtime_checkable

from ..models.device import DeviceIdentity, X509Credential
from ..models.message import ReceivedMessage, TestMessage


@runtime_checkable
class RegistryClient(Protocol):
    """Device identity registry"""

    async def create_device_with_certificate(self, device_id: str,
                                             credential: X509Credential) -> DeviceIdentity:
        """Register an X.509 self-signed device identity"""
        ...

    async def delete_device(self, device_id: str) -> None:
        """Delete a device identity. Raises DeviceNotFoundError if absent."""
        ...

    async def get_device(self, device_id: str) -> DeviceIdentity:
        """Look up a device identity. Raises DeviceNotFoundError if absent."""
        ...

    async def list_devices(self) -> List[str]:
        """Return all registered device ids"""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class DeviceMessagingClient(Protocol):
    """Device-side messaging client bound to one transport"""

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def send(self, message: TestMessage) -> None:
        """Send a device-to-cloud message"""
        ...

    async def receive(self, timeout: Optional[float] = None) -> Optional[ReceivedMessage]:
        """
        Receive one cloud-to-device message.

        With a timeout, wait at most that long; without one, poll once.
        Returns None if nothing arrived.
        """
        ...

    async def complete(self, message: ReceivedMessage) -> None:
        """Acknowledge a received message"""
        ...


@runtime_checkable
class ServiceMessagingClient(Protocol):
    """Service-side client that sends cloud-to-device messages"""

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def send(self, device_id: str, message: TestMessage) -> None:
        ...


@runtime_checkable
class CertificateProvider(Protocol):
    """Source of the suite's X.509 device credential"""

    def get_certificate_with_private_key(self) -> X509Credential:
        ...


HostTuple = Tuple[str, str]
