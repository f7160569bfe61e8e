"""
In-memory loopback hub for HubProbe

Implements the registry, device and service client interfaces against a
single in-process hub so the round-trip suite runs without a cloud backend.
Receive semantics follow the transport binding: bounded-wait bindings block
up to the requested timeout, HTTP polling returns immediately.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..core.errors import (
    DeviceNotFoundError,
    MessagingError,
    RegistryError,
    TransportOpenFailure,
)
from ..core.logging import get_logger
from ..models.device import DeviceIdentity, X509Credential
from ..models.message import ReceivedMessage, TestMessage
from ..models.transport import TransportBinding

DEFAULT_HOST_NAME = "loopback.azure-devices.net"


@dataclass
class HubStats:
    """Counters the tests inspect after a run"""
    devices_created: int = 0
    devices_deleted: int = 0
    cloud_to_device_sent: int = 0
    device_to_cloud_received: int = 0
    completions: int = 0
    receive_calls: List[Tuple[str, Optional[float]]] = field(default_factory=list)


class LoopbackHub:
    """Process-local hub shared by every loopback client."""

    def __init__(self, host_name: str = DEFAULT_HOST_NAME, delivery_delay: float = 0.0):
        self.host_name = host_name
        self.delivery_delay = delivery_delay
        self.drop_cloud_to_device = False
        self.unsupported_bindings: Set[TransportBinding] = set()
        self.devices: Dict[str, DeviceIdentity] = {}
        self.device_to_cloud: List[Tuple[str, TestMessage]] = []
        self.stats = HubStats()
        self._queues: Dict[str, asyncio.Queue] = {}
        self._locks: Dict[str, str] = {}
        self.logger = get_logger('loopback')

    def queue_for(self, device_id: str) -> asyncio.Queue:
        if device_id not in self._queues:
            self._queues[device_id] = asyncio.Queue()
        return self._queues[device_id]

    def enqueue(self, device_id: str, message: TestMessage) -> None:
        """Deliver a cloud-to-device message to the device's queue"""
        if device_id not in self.devices:
            self.logger.debug(f"Dropping message for deleted device {device_id}")
            return
        lock_token = str(uuid.uuid4())
        self._locks[lock_token] = device_id
        self.queue_for(device_id).put_nowait(ReceivedMessage(
            data=message.payload,
            properties=dict(message.properties),
            message_id=message.message_id,
            lock_token=lock_token,
        ))

    def complete(self, device_id: str, lock_token: Optional[str]) -> None:
        if lock_token is None or self._locks.get(lock_token) != device_id:
            raise MessagingError(f"Unknown or already completed lock token: {lock_token}")
        del self._locks[lock_token]
        self.stats.completions += 1

    def registry(self) -> 'LoopbackRegistry':
        return LoopbackRegistry(self)

    def device_client(self, device_id: str, credential: X509Credential,
                      binding: TransportBinding) -> 'LoopbackDeviceClient':
        return LoopbackDeviceClient(self, device_id, credential, binding)

    def service_client(self) -> 'LoopbackServiceClient':
        return LoopbackServiceClient(self)


class LoopbackRegistry:
    """Registry handle over the loopback hub"""

    def __init__(self, hub: LoopbackHub):
        self.hub = hub
        self.closed = False

    def _check_open(self):
        if self.closed:
            raise RegistryError("Registry handle is closed")

    async def create_device_with_certificate(self, device_id: str,
                                             credential: X509Credential) -> DeviceIdentity:
        self._check_open()
        if device_id in self.hub.devices:
            raise RegistryError(f"Device already exists: {device_id}", status=409)
        identity = DeviceIdentity(device_id=device_id, host_name=self.hub.host_name,
                                  thumbprint=credential.thumbprint)
        self.hub.devices[device_id] = identity
        self.hub.stats.devices_created += 1
        return identity

    async def delete_device(self, device_id: str) -> None:
        self._check_open()
        if device_id not in self.hub.devices:
            raise DeviceNotFoundError(device_id)
        del self.hub.devices[device_id]
        self.hub._queues.pop(device_id, None)
        self.hub.stats.devices_deleted += 1

    async def get_device(self, device_id: str) -> DeviceIdentity:
        self._check_open()
        try:
            return self.hub.devices[device_id]
        except KeyError:
            raise DeviceNotFoundError(device_id) from None

    async def list_devices(self) -> List[str]:
        self._check_open()
        return list(self.hub.devices)

    async def close(self) -> None:
        self.closed = True


class LoopbackDeviceClient:
    """Device client bound to one transport binding"""

    def __init__(self, hub: LoopbackHub, device_id: str, credential: X509Credential,
                 binding: TransportBinding):
        self.hub = hub
        self.device_id = device_id
        self.credential = credential
        self.binding = binding
        self.is_open = False

    async def open(self) -> None:
        if self.binding in self.hub.unsupported_bindings:
            raise TransportOpenFailure(f"Transport {self.binding} is not available",
                                       transport=str(self.binding))
        identity = self.hub.devices.get(self.device_id)
        if identity is None:
            raise TransportOpenFailure(f"Unknown device {self.device_id}",
                                       transport=str(self.binding))
        if identity.thumbprint != self.credential.thumbprint:
            raise TransportOpenFailure(
                f"Certificate thumbprint does not match device {self.device_id}",
                transport=str(self.binding)
            )
        await asyncio.sleep(0)
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    def _check_open(self):
        if not self.is_open:
            raise MessagingError("Device client is not open", transport=str(self.binding))

    async def send(self, message: TestMessage) -> None:
        self._check_open()
        await asyncio.sleep(0)
        self.hub.device_to_cloud.append((self.device_id, message))
        self.hub.stats.device_to_cloud_received += 1

    async def receive(self, timeout: Optional[float] = None) -> Optional[ReceivedMessage]:
        self._check_open()
        self.hub.stats.receive_calls.append((self.device_id, timeout))
        queue = self.hub.queue_for(self.device_id)

        if timeout is not None:
            if not self.binding.supports_bounded_wait:
                raise MessagingError("Transport does not support a receive timeout",
                                     transport=str(self.binding))
            try:
                return await asyncio.wait_for(queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return None

        await asyncio.sleep(0)
        try:
            return queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def complete(self, message: ReceivedMessage) -> None:
        self._check_open()
        self.hub.complete(self.device_id, message.lock_token)


class LoopbackServiceClient:
    """Service client that sends cloud-to-device messages through the hub"""

    def __init__(self, hub: LoopbackHub):
        self.hub = hub
        self.is_open = False

    async def open(self) -> None:
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def send(self, device_id: str, message: TestMessage) -> None:
        if not self.is_open:
            raise MessagingError("Service client is not open")
        if device_id not in self.hub.devices:
            raise DeviceNotFoundError(device_id)

        self.hub.stats.cloud_to_device_sent += 1
        if self.hub.drop_cloud_to_device:
            self.hub.logger.debug(f"Dropping cloud-to-device message for {device_id}")
            return

        if self.hub.delivery_delay > 0:
            asyncio.get_running_loop().call_later(
                self.hub.delivery_delay, self.hub.enqueue, device_id, message
            )
        else:
            self.hub.enqueue(device_id, message)
