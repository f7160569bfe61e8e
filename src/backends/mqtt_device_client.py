"""
MQTT Device Client for HubProbe

Provides an async wrapper around paho-mqtt that connects as a hub device
with an X.509 client certificate, over TCP (8883) or WebSockets (443).

Cloud-to-device messages arrive on the paho network thread and are handed
to the event loop thread-safely. The device-bound subscription is made on
the first receive, which is why MQTT bindings prime with a dummy receive.
"""

import asyncio
import ssl
import urllib.parse
import uuid
from enum import Enum
from typing import Dict, Optional, Set, Tuple

try:
    import paho.mqtt.client as mqtt
except ImportError:
    raise ImportError("paho-mqtt library is required. Install with: pip install 'paho-mqtt>=1.6.1,<2'")

from ..core.errors import MessagingError, TransportOpenFailure
from ..core.logging import get_logger
from ..models.device import X509Credential
from ..models.message import ReceivedMessage, TestMessage

API_VERSION = "2021-04-12"
MQTT_PORT = 8883
WEBSOCKET_PORT = 443
WEBSOCKET_PATH = "/$iothub/websocket"


class ConnectionState(Enum):
    """MQTT connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


def device_bound_topic(device_id: str) -> str:
    return f"devices/{device_id}/messages/devicebound/#"


def events_topic(device_id: str, message: TestMessage) -> str:
    """Telemetry topic with the property bag URL-encoded into it"""
    pairs = []
    if message.message_id:
        pairs.append(("$.mid", message.message_id))
    pairs.extend(message.properties.items())
    bag = "&".join(
        f"{urllib.parse.quote(key, safe='$')}={urllib.parse.quote(value, safe='')}"
        for key, value in pairs
    )
    return f"devices/{device_id}/messages/events/{bag}"


def parse_device_bound(topic: str, payload: bytes) -> ReceivedMessage:
    """
    Split a device-bound topic into user properties and system properties.

    System properties are prefixed with '$.'; only the message id is kept.
    """
    _, _, bag = topic.partition("/messages/devicebound/")
    properties: Dict[str, str] = {}
    message_id = None
    for key, value in urllib.parse.parse_qsl(bag, keep_blank_values=True):
        if key == "$.mid":
            message_id = value
        elif key.startswith("$."):
            continue
        else:
            properties[key] = value
    return ReceivedMessage(data=payload, properties=properties, message_id=message_id,
                           lock_token=str(uuid.uuid4()))


class MqttDeviceClient:
    """
    Async MQTT device client.

    Provides:
    - X.509 TLS authentication
    - TCP or WebSocket transport
    - Lazy device-bound subscription
    - QoS 1 telemetry publishing
    """

    def __init__(self, device_id: str, host_name: str, credential: X509Credential,
                 websocket: bool = False, connect_timeout: float = 10.0,
                 operation_timeout: float = 10.0):
        self.device_id = device_id
        self.host_name = host_name
        self.credential = credential
        self.websocket = websocket
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout
        self.logger = get_logger('mqtt_device')
        self.transport = "mqtt_ws" if websocket else "mqtt_tcp"

        self._state = ConnectionState.DISCONNECTED
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected: Optional[asyncio.Future] = None
        self._subscribed = False
        self._pending: Dict[int, asyncio.Future] = {}
        self._acked_mids: Set[int] = set()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._completed: Set[str] = set()

        self.stats = {
            'messages_published': 0,
            'messages_received': 0,
            'publish_errors': 0,
        }

        self._client = mqtt.Client(
            client_id=device_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
            transport="websockets" if websocket else "tcp"
        )

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.on_subscribe = self._on_ack
        self._client.on_publish = self._on_publish

        self._configure_client()

    @property
    def port(self) -> int:
        return WEBSOCKET_PORT if self.websocket else MQTT_PORT

    def _configure_client(self):
        """Configure device credentials, TLS and the WebSocket path."""
        username = f"{self.host_name}/{self.device_id}/?api-version={API_VERSION}"
        self._client.username_pw_set(username=username)

        try:
            self._client.tls_set(
                ca_certs=self.credential.ca_path or None,
                certfile=self.credential.cert_path,
                keyfile=self.credential.key_path,
                cert_reqs=ssl.CERT_REQUIRED,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
                ciphers=None
            )
        except (ssl.SSLError, OSError, ValueError) as e:
            self.logger.error(f"Failed to configure TLS for device {self.device_id}: {e}")
            raise TransportOpenFailure(f"TLS configuration failed: {e}",
                                       transport=self.transport) from e

        if self.websocket:
            self._client.ws_set_options(path=WEBSOCKET_PATH)

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def get_state(self) -> ConnectionState:
        return self._state

    async def open(self) -> None:
        """
        Connect to the hub.

        Raises:
            TransportOpenFailure: On refusal, network error or timeout
        """
        if self._state == ConnectionState.CONNECTED:
            return

        self._loop = asyncio.get_running_loop()
        self._connected = self._loop.create_future()
        self._state = ConnectionState.CONNECTING

        self.logger.info(
            f"Connecting device {self.device_id} to {self.host_name}:{self.port} "
            f"over {self.transport}"
        )

        try:
            self._client.connect_async(host=self.host_name, port=self.port, keepalive=60)
            self._client.loop_start()
        except (ValueError, OSError) as e:
            self._state = ConnectionState.DISCONNECTED
            raise TransportOpenFailure(f"Could not connect to {self.host_name}: {e}",
                                       transport=self.transport) from e

        try:
            rc = await asyncio.wait_for(self._connected, timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            self._client.loop_stop()
            self._state = ConnectionState.DISCONNECTED
            raise TransportOpenFailure(
                f"Connection timeout after {self.connect_timeout} seconds",
                transport=self.transport
            ) from None

        if rc != 0:
            self._client.loop_stop()
            self._state = ConnectionState.DISCONNECTED
            raise TransportOpenFailure(
                f"Connection refused: {mqtt.connack_string(rc)}", transport=self.transport
            )

        self._state = ConnectionState.CONNECTED
        self.logger.info(f"Device {self.device_id} connected over {self.transport}")

    async def close(self) -> None:
        """Disconnect from the hub. Safe to call on an unopened client."""
        if self._state == ConnectionState.DISCONNECTED:
            return

        self._state = ConnectionState.DISCONNECTING
        try:
            self._client.disconnect()
        finally:
            self._client.loop_stop()
            self._state = ConnectionState.DISCONNECTED
            self._subscribed = False
        self.logger.info(f"Device {self.device_id} disconnected")

    async def send(self, message: TestMessage) -> None:
        """Publish a device-to-cloud message at QoS 1 and wait for PUBACK."""
        self._check_connected()
        topic = events_topic(self.device_id, message)
        result = self._client.publish(topic, message.payload, qos=1)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.stats['publish_errors'] += 1
            raise MessagingError(f"Publish failed with return code: {result.rc}",
                                 transport=self.transport)

        await self._wait_for_ack(result.mid, "publish")
        self.stats['messages_published'] += 1
        self.logger.debug(
            f"Published message - topic={topic}, size={len(message.payload)} bytes, mid={result.mid}"
        )

    async def receive(self, timeout: Optional[float] = None) -> Optional[ReceivedMessage]:
        """Wait up to timeout for a device-bound message; poll once without one."""
        self._check_connected()
        await self._ensure_subscribed()

        if timeout is None:
            try:
                return self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def complete(self, message: ReceivedMessage) -> None:
        """
        Acknowledge a received message.

        paho sends the QoS 1 PUBACK on receipt, so completion only guards
        against acknowledging the same message twice.
        """
        if message.lock_token in self._completed:
            raise MessagingError(f"Message already completed: {message.lock_token}",
                                 transport=self.transport)
        self._completed.add(message.lock_token)

    async def _ensure_subscribed(self):
        if self._subscribed:
            return
        topic = device_bound_topic(self.device_id)
        rc, mid = self._client.subscribe(topic, qos=1)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise MessagingError(f"Subscribe to {topic} failed with return code: {rc}",
                                 transport=self.transport)
        await self._wait_for_ack(mid, "subscribe")
        self._subscribed = True
        self.logger.debug(f"Subscribed to {topic}")

    async def _wait_for_ack(self, mid: int, operation: str):
        # Acks are dispatched onto this loop, so an ack cannot land between
        # the paho call returning and the future being registered below.
        if mid in self._acked_mids:
            self._acked_mids.discard(mid)
            return
        future = self._loop.create_future()
        self._pending[mid] = future
        try:
            await asyncio.wait_for(future, timeout=self.operation_timeout)
        except asyncio.TimeoutError:
            raise MessagingError(f"No {operation} acknowledgement for mid={mid}",
                                 transport=self.transport) from None
        finally:
            self._pending.pop(mid, None)

    def _check_connected(self):
        if not self.is_connected():
            raise MessagingError("Device client is not connected", transport=self.transport)

    def _dispatch(self, callback, *args):
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback, *args)

    # paho callbacks, invoked on the network thread

    def _on_connect(self, client, userdata, flags, rc):
        self._dispatch(self._handle_connect, rc)

    def _on_disconnect(self, client, userdata, rc):
        if rc != 0:
            self.logger.warning(f"Device {self.device_id} disconnected unexpectedly (rc={rc})")
        self._dispatch(self._handle_disconnect, rc)

    def _on_message(self, client, userdata, msg):
        self._dispatch(self._handle_message, msg.topic, msg.payload)

    def _on_ack(self, client, userdata, mid, granted_qos=None):
        self._dispatch(self._handle_ack, mid)

    def _on_publish(self, client, userdata, mid):
        self._dispatch(self._handle_ack, mid)

    # loop-thread handlers

    def _handle_connect(self, rc: int):
        if self._connected is not None and not self._connected.done():
            self._connected.set_result(rc)

    def _handle_disconnect(self, rc: int):
        if self._state == ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED
            self._subscribed = False

    def _handle_message(self, topic: str, payload: bytes):
        self.stats['messages_received'] += 1
        self._queue.put_nowait(parse_device_bound(topic, payload))

    def _handle_ack(self, mid: int):
        future = self._pending.get(mid)
        if future is None:
            self._acked_mids.add(mid)
        elif not future.done():
            future.set_result(mid)
