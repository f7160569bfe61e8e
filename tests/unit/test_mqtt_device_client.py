"""
Unit tests for the MQTT device client

paho-mqtt is replaced by a MagicMock; broker callbacks are invoked by hand
the way the paho network thread would invoke them.
"""

import asyncio
import ssl
from unittest.mock import MagicMock, patch

import pytest

from src.backends.mqtt_device_client import (
    WEBSOCKET_PATH,
    ConnectionState,
    MqttDeviceClient,
    device_bound_topic,
    events_topic,
    parse_device_bound,
)
from src.core.errors import MessagingError, TransportOpenFailure
from src.models.device import X509Credential
from src.models.message import TestMessage

HOST = "test-hub.azure-devices.net"
DEVICE = "E2E_X509_Test_dev"


@pytest.fixture
def credential():
    return X509Credential(cert_path="/certs/device.pem", key_path="/certs/device.key",
                          thumbprint="AB" * 20, ca_path="/certs/ca.pem")


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho-mqtt client"""
    with patch('src.backends.mqtt_device_client.mqtt.Client') as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client

        mock_result = MagicMock()
        mock_result.rc = 0
        mock_result.mid = 7
        mock_client.publish.return_value = mock_result
        mock_client.subscribe.return_value = (0, 3)

        yield mock_client


def wire_broker(client, mock_mqtt_client, connect_rc=0):
    """Make the mocked paho client acknowledge like a broker would"""
    mock_mqtt_client.loop_start.side_effect = lambda: client._on_connect(None, None, {}, connect_rc)
    mock_mqtt_client.subscribe.side_effect = lambda topic, qos: (
        client._on_ack(None, None, 3, (qos,)) or (0, 3)
    )

    def publish(topic, payload, qos):
        client._on_publish(None, None, 7)
        return mock_mqtt_client.publish.return_value

    mock_mqtt_client.publish.side_effect = publish


class TestTopics:

    def test_device_bound_topic(self):
        assert device_bound_topic("dev") == "devices/dev/messages/devicebound/#"

    def test_events_topic_encodes_properties(self):
        message = TestMessage(payload=b"x", properties={"property1": "a b&c"}, message_id="m-1")

        topic = events_topic("dev", message)

        assert topic == "devices/dev/messages/events/$.mid=m-1&property1=a%20b%26c"

    def test_parse_device_bound_keeps_user_properties(self):
        topic = "devices/dev/messages/devicebound/%24.mid=m-1&%24.to=%2Fdevices%2Fdev&property1=v1"

        received = parse_device_bound(topic, b"payload")

        assert received.properties == {"property1": "v1"}
        assert received.message_id == "m-1"
        assert received.data == b"payload"
        assert received.lock_token

    def test_parse_device_bound_without_properties(self):
        received = parse_device_bound("devices/dev/messages/devicebound/", b"")

        assert received.properties == {}
        assert received.message_id is None


class TestInitialization:

    def test_tcp_configuration(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential)

        assert client.port == 8883
        assert client.get_state() == ConnectionState.DISCONNECTED
        mock_mqtt_client.username_pw_set.assert_called_once_with(
            username=f"{HOST}/{DEVICE}/?api-version=2021-04-12"
        )
        call_kwargs = mock_mqtt_client.tls_set.call_args[1]
        assert call_kwargs['certfile'] == "/certs/device.pem"
        assert call_kwargs['keyfile'] == "/certs/device.key"
        assert call_kwargs['ca_certs'] == "/certs/ca.pem"
        assert call_kwargs['cert_reqs'] == ssl.CERT_REQUIRED
        mock_mqtt_client.ws_set_options.assert_not_called()

    def test_websocket_configuration(self, credential, mock_mqtt_client):
        with patch('src.backends.mqtt_device_client.mqtt.Client') as mock_client_class:
            mock_client_class.return_value = mock_mqtt_client
            client = MqttDeviceClient(DEVICE, HOST, credential, websocket=True)

            assert mock_client_class.call_args[1]['transport'] == "websockets"

        assert client.port == 443
        assert client.transport == "mqtt_ws"
        mock_mqtt_client.ws_set_options.assert_called_once_with(path=WEBSOCKET_PATH)

    def test_tls_failure(self, credential, mock_mqtt_client):
        mock_mqtt_client.tls_set.side_effect = FileNotFoundError("device.pem")

        with pytest.raises(TransportOpenFailure, match="TLS configuration failed"):
            MqttDeviceClient(DEVICE, HOST, credential)


class TestConnection:

    @pytest.mark.asyncio
    async def test_open_success(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential)
        wire_broker(client, mock_mqtt_client)

        await client.open()

        assert client.is_connected()
        mock_mqtt_client.connect_async.assert_called_once_with(host=HOST, port=8883, keepalive=60)

    @pytest.mark.asyncio
    async def test_open_refused(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential)
        wire_broker(client, mock_mqtt_client, connect_rc=5)

        with pytest.raises(TransportOpenFailure, match="Connection refused"):
            await client.open()

        assert client.get_state() == ConnectionState.DISCONNECTED
        mock_mqtt_client.loop_stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_open_timeout(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential, connect_timeout=0.05)

        with pytest.raises(TransportOpenFailure, match="timeout"):
            await client.open()

        assert client.get_state() == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_open_network_error(self, credential, mock_mqtt_client):
        mock_mqtt_client.connect_async.side_effect = OSError("name resolution failed")
        client = MqttDeviceClient(DEVICE, HOST, credential)

        with pytest.raises(TransportOpenFailure):
            await client.open()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential)
        wire_broker(client, mock_mqtt_client)
        await client.open()

        await client.close()
        await client.close()

        mock_mqtt_client.disconnect.assert_called_once()
        assert client.get_state() == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unexpected_disconnect(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential)
        wire_broker(client, mock_mqtt_client)
        await client.open()

        client._on_disconnect(None, None, 7)
        await asyncio.sleep(0)

        assert not client.is_connected()
        with pytest.raises(MessagingError):
            await client.receive(timeout=0.01)


class TestMessaging:

    @pytest.mark.asyncio
    async def test_send_waits_for_puback(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)
        message = TestMessage(payload=b"hello", properties={"property1": "v"})

        await client.send(message)

        topic, payload = mock_mqtt_client.publish.call_args[0][:2]
        assert topic == f"devices/{DEVICE}/messages/events/property1=v"
        assert payload == b"hello"
        assert mock_mqtt_client.publish.call_args[1]['qos'] == 1
        assert client.stats['messages_published'] == 1

    @pytest.mark.asyncio
    async def test_send_publish_error(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)
        mock_mqtt_client.publish.side_effect = None
        mock_mqtt_client.publish.return_value.rc = 4

        with pytest.raises(MessagingError, match="Publish failed"):
            await client.send(TestMessage(payload=b"x"))

        assert client.stats['publish_errors'] == 1

    @pytest.mark.asyncio
    async def test_send_without_ack_times_out(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)
        mock_mqtt_client.publish.side_effect = None

        with pytest.raises(MessagingError, match="acknowledgement"):
            await client.send(TestMessage(payload=b"x"))

    @pytest.mark.asyncio
    async def test_send_requires_connection(self, credential, mock_mqtt_client):
        client = MqttDeviceClient(DEVICE, HOST, credential)

        with pytest.raises(MessagingError, match="not connected"):
            await client.send(TestMessage(payload=b"x"))

    @pytest.mark.asyncio
    async def test_first_receive_subscribes_once(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)

        assert await client.receive(timeout=0.01) is None
        assert await client.receive() is None

        mock_mqtt_client.subscribe.assert_called_once_with(device_bound_topic(DEVICE), qos=1)

    @pytest.mark.asyncio
    async def test_receive_delivers_broker_message(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)
        await client.receive(timeout=0.01)

        msg = MagicMock()
        msg.topic = f"devices/{DEVICE}/messages/devicebound/%24.mid=m-1&property1=v"
        msg.payload = b"hello"
        client._on_message(None, None, msg)

        received = await client.receive(timeout=0.5)

        assert received.data == b"hello"
        assert received.properties == {"property1": "v"}
        assert client.stats['messages_received'] == 1

    @pytest.mark.asyncio
    async def test_subscribe_error(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)
        mock_mqtt_client.subscribe.side_effect = None
        mock_mqtt_client.subscribe.return_value = (4, 0)

        with pytest.raises(MessagingError, match="Subscribe"):
            await client.receive(timeout=0.01)

    @pytest.mark.asyncio
    async def test_complete_twice_fails(self, credential, mock_mqtt_client):
        client = await _connected(credential, mock_mqtt_client)
        received = parse_device_bound(f"devices/{DEVICE}/messages/devicebound/property1=v", b"x")

        await client.complete(received)

        with pytest.raises(MessagingError, match="already completed"):
            await client.complete(received)


async def _connected(credential, mock_mqtt_client):
    client = MqttDeviceClient(DEVICE, HOST, credential, operation_timeout=0.2)
    wire_broker(client, mock_mqtt_client)
    await client.open()
    return client
