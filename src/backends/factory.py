"""
Backend selection for HubProbe

A backend supplies every collaborator a round trip needs: the registry
handle, the certificate provider, and the device and service messaging
clients for each transport binding.
"""

import base64
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..core.config import ConfigurationError
from ..core.connection_string import get_host_name
from ..core.errors import TransportOpenFailure
from ..core.interfaces import (
    CertificateProvider,
    DeviceMessagingClient,
    RegistryClient,
    ServiceMessagingClient,
)
from ..core.logging import get_logger
from ..models.device import DeviceIdentity, X509Credential
from ..models.message import ReceivedMessage
from ..models.transport import TransportBinding
from .certificates import FileCertificateProvider, StaticCertificateProvider
from .http_device_client import HttpDeviceClient
from .loopback import LoopbackHub
from .mqtt_device_client import MqttDeviceClient
from .registry import HubRegistryClient


class Backend(ABC):
    """Factory for the collaborators of one hub"""

    name = "abstract"

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self.logger = get_logger(f'backend.{self.name}')

    @abstractmethod
    def create_registry(self) -> RegistryClient:
        pass

    @abstractmethod
    def certificate_provider(self) -> CertificateProvider:
        pass

    @abstractmethod
    def device_client(self, identity: DeviceIdentity, credential: X509Credential,
                      binding: TransportBinding) -> DeviceMessagingClient:
        pass

    @abstractmethod
    def service_client(self) -> ServiceMessagingClient:
        pass


class LoopbackBackend(Backend):
    """Every binding served by an in-process hub"""

    name = "loopback"

    def __init__(self, hub: Optional[LoopbackHub] = None, connection_string: str = ""):
        if hub is None:
            hub = LoopbackHub(get_host_name(connection_string)) if connection_string else LoopbackHub()
        self.hub = hub
        if not connection_string:
            key = base64.b64encode(b"loopback-shared-access-key").decode('ascii')
            connection_string = (
                f"HostName={self.hub.host_name};"
                f"SharedAccessKeyName=iothubowner;SharedAccessKey={key}"
            )
        super().__init__(connection_string)
        self._certificates = StaticCertificateProvider()

    def create_registry(self) -> RegistryClient:
        return self.hub.registry()

    def certificate_provider(self) -> CertificateProvider:
        return self._certificates

    def device_client(self, identity: DeviceIdentity, credential: X509Credential,
                      binding: TransportBinding) -> DeviceMessagingClient:
        return self.hub.device_client(identity.device_id, credential, binding)

    def service_client(self) -> ServiceMessagingClient:
        return self.hub.service_client()


class UnavailableClient:
    """Stand-in for a transport this stack has no client for; fails on open."""

    def __init__(self, transport: str, reason: str):
        self.transport = transport
        self.reason = reason

    async def open(self) -> None:
        raise TransportOpenFailure(f"{self.transport}: {self.reason}", transport=self.transport)

    async def close(self) -> None:
        pass

    async def send(self, *args: Any) -> None:
        raise TransportOpenFailure(f"{self.transport}: {self.reason}", transport=self.transport)

    async def receive(self, timeout: Optional[float] = None) -> Optional[ReceivedMessage]:
        raise TransportOpenFailure(f"{self.transport}: {self.reason}", transport=self.transport)

    async def complete(self, message: ReceivedMessage) -> None:
        raise TransportOpenFailure(f"{self.transport}: {self.reason}", transport=self.transport)


class IoTHubBackend(Backend):
    """A real hub: REST registry, paho-mqtt and HTTPS device clients"""

    name = "iothub"

    def __init__(self, connection_string: str, certificate_config: Dict[str, Any]):
        super().__init__(connection_string)
        self._certificates = FileCertificateProvider(
            certificate_config.get('cert_path', ''),
            certificate_config.get('key_path', ''),
            certificate_config.get('ca_path') or None,
        )

    def create_registry(self) -> RegistryClient:
        return HubRegistryClient(self.connection_string)

    def certificate_provider(self) -> CertificateProvider:
        return self._certificates

    def device_client(self, identity: DeviceIdentity, credential: X509Credential,
                      binding: TransportBinding) -> DeviceMessagingClient:
        if binding.protocol == "mqtt":
            return MqttDeviceClient(identity.device_id, identity.host_name, credential,
                                    websocket=binding.websocket)
        if binding.protocol == "http":
            return HttpDeviceClient(identity.device_id, identity.host_name, credential)
        return UnavailableClient(str(binding), "no AMQP device client is installed")

    def service_client(self) -> ServiceMessagingClient:
        return UnavailableClient("service", "no AMQP service client is installed")


def create_backend(config: Dict[str, Any]) -> Backend:
    """Build the backend named by hub.backend"""
    hub_config = config.get('hub', {})
    name = hub_config.get('backend', 'loopback')

    if name == 'loopback':
        return LoopbackBackend(connection_string=hub_config.get('connection_string', ''))
    if name == 'iothub':
        return IoTHubBackend(hub_config.get('connection_string', ''),
                             config.get('certificate', {}))
    raise ConfigurationError(f"Unknown backend: {name}")
