"""
HTTP device client for HubProbe

Device-side messaging over the hub's HTTPS API with an X.509 client
certificate. HTTP has no long polling: every receive is a single request
that returns immediately, with or without a message.
"""

import asyncio
import ssl
import urllib.parse
from typing import Dict, Optional, Set

import aiohttp

from ..core.errors import MessagingError, TransportOpenFailure
from ..core.logging import get_logger
from ..models.device import X509Credential
from ..models.message import ReceivedMessage, TestMessage

API_VERSION = "2021-04-12"
APP_PROPERTY_PREFIX = "iothub-app-"
MESSAGE_ID_HEADER = "iothub-messageid"


class HttpDeviceClient:
    """Device messaging client over HTTPS"""

    transport = "http"

    def __init__(self, device_id: str, host_name: str, credential: X509Credential,
                 timeout: float = 30.0, endpoint: Optional[str] = None):
        self.device_id = device_id
        self.host_name = host_name
        self.endpoint = (endpoint or f"https://{host_name}").rstrip("/")
        self.credential = credential
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._completed: Set[str] = set()
        self.logger = get_logger('http_device')

    @property
    def base_url(self) -> str:
        return f"{self.endpoint}/devices/{urllib.parse.quote(self.device_id, safe='')}"

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context(cafile=self.credential.ca_path or None)
        context.load_cert_chain(self.credential.cert_path, self.credential.key_path)
        return context

    async def open(self) -> None:
        if self.session is not None and not self.session.closed:
            return
        try:
            context = self._ssl_context()
        except (ssl.SSLError, OSError) as e:
            raise TransportOpenFailure(f"TLS configuration failed: {e}",
                                       transport=self.transport) from e
        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(ssl=context),
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        self.logger.info(f"HTTP client opened for device {self.device_id}")

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.info(f"HTTP client closed for device {self.device_id}")
        self.session = None

    def _check_open(self):
        if self.session is None or self.session.closed:
            raise MessagingError("HTTP client is not open", transport=self.transport)

    async def send(self, message: TestMessage) -> None:
        self._check_open()
        headers = {f"{APP_PROPERTY_PREFIX}{k}": v for k, v in message.properties.items()}
        if message.message_id:
            headers[MESSAGE_ID_HEADER] = message.message_id

        await self._request('POST', f"{self.base_url}/messages/events",
                            data=message.payload, headers=headers)
        self.logger.debug(f"Sent {len(message.payload)} bytes from device {self.device_id}")

    async def receive(self, timeout: Optional[float] = None) -> Optional[ReceivedMessage]:
        """Poll once for a device-bound message."""
        if timeout is not None:
            raise MessagingError("Long-polling is not supported over HTTP",
                                 transport=self.transport)
        self._check_open()

        url = f"{self.base_url}/messages/deviceBound"
        try:
            async with self.session.get(url, params={'api-version': API_VERSION}) as response:
                if response.status == 204:
                    return None
                if response.status >= 400:
                    raise MessagingError(f"Receive failed with HTTP {response.status}",
                                         transport=self.transport)
                body = await response.read()
                return self._to_message(body, response.headers)
        except aiohttp.ClientError as e:
            raise MessagingError(f"Receive failed: {e}", transport=self.transport) from e
        except asyncio.TimeoutError as e:
            raise MessagingError(f"Receive timed out after {self.timeout}s",
                                 transport=self.transport) from e

    async def complete(self, message: ReceivedMessage) -> None:
        if not message.lock_token:
            raise MessagingError("Message has no lock token", transport=self.transport)
        if message.lock_token in self._completed:
            raise MessagingError(f"Message already completed: {message.lock_token}",
                                 transport=self.transport)
        self._check_open()

        lock = urllib.parse.quote(message.lock_token, safe='')
        await self._request('DELETE', f"{self.base_url}/messages/deviceBound/{lock}")
        self._completed.add(message.lock_token)

    async def _request(self, method: str, url: str, data: Optional[bytes] = None,
                       headers: Optional[Dict[str, str]] = None) -> None:
        try:
            async with self.session.request(method, url, params={'api-version': API_VERSION},
                                            data=data, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise MessagingError(
                        f"{method} {url} failed with HTTP {response.status}: {text}",
                        transport=self.transport
                    )
        except aiohttp.ClientError as e:
            raise MessagingError(f"{method} {url} failed: {e}", transport=self.transport) from e
        except asyncio.TimeoutError as e:
            raise MessagingError(f"{method} {url} timed out after {self.timeout}s",
                                 transport=self.transport) from e

    @staticmethod
    def _to_message(body: bytes, headers) -> ReceivedMessage:
        properties = {}
        for key, value in headers.items():
            if key.lower().startswith(APP_PROPERTY_PREFIX):
                properties[key[len(APP_PROPERTY_PREFIX):]] = value
        etag = headers.get('ETag', '')
        return ReceivedMessage(
            data=body,
            properties=properties,
            message_id=headers.get(MESSAGE_ID_HEADER),
            lock_token=etag.strip('"') or None,
        )
