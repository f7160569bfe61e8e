"""
Hub registry REST client

Creates, looks up and deletes X.509 device identities through the hub's
registry REST API, authenticated with a SAS token derived from the service
connection string.
"""

import asyncio
import urllib.parse
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.connection_string import ConnectionString
from ..core.errors import DeviceNotFoundError, RegistryError
from ..core.logging import get_logger
from ..models.device import DeviceIdentity, X509Credential

API_VERSION = "2021-04-12"


class HubRegistryClient:
    """Registry handle backed by aiohttp"""

    def __init__(self, connection_string: str, timeout: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None,
                 endpoint: Optional[str] = None):
        self.connection = ConnectionString.parse(connection_string)
        self.host_name = self.connection.host_name
        self.endpoint = (endpoint or f"https://{self.host_name}").rstrip("/")
        self.timeout = timeout
        self.session = session
        self.logger = get_logger('registry')

    async def _ensure_session(self):
        """Ensure HTTP session is created"""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()

    def _device_url(self, device_id: str) -> str:
        return f"{self.endpoint}/devices/{urllib.parse.quote(device_id, safe='')}"

    async def _request(self, method: str, url: str,
                       body: Optional[Dict[str, Any]] = None,
                       headers: Optional[Dict[str, str]] = None,
                       device_id: Optional[str] = None) -> Any:
        """
        Make an authenticated registry request.

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            DeviceNotFoundError: On 404 for a device-scoped request
            RegistryError: On any other failure
        """
        await self._ensure_session()

        request_headers = {
            'Authorization': self.connection.generate_sas_token(),
            'Content-Type': 'application/json; charset=utf-8',
        }
        if headers:
            request_headers.update(headers)

        try:
            async with self.session.request(
                method,
                url,
                params={'api-version': API_VERSION},
                json=body,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status == 404 and device_id is not None:
                    raise DeviceNotFoundError(device_id)
                if response.status >= 400:
                    text = await response.text()
                    raise RegistryError(
                        f"Registry {method} {url} failed with HTTP {response.status}: {text}",
                        status=response.status
                    )
                if response.status == 204 or response.content_length == 0:
                    return None
                return await response.json(content_type=None)

        except aiohttp.ClientError as e:
            raise RegistryError(f"Registry {method} {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise RegistryError(f"Registry {method} {url} timed out after {self.timeout}s") from e

    async def create_device_with_certificate(self, device_id: str,
                                             credential: X509Credential) -> DeviceIdentity:
        body = {
            'deviceId': device_id,
            'status': 'enabled',
            'authentication': {
                'type': 'selfSigned',
                'x509Thumbprint': {
                    'primaryThumbprint': credential.thumbprint,
                    'secondaryThumbprint': credential.thumbprint,
                },
            },
        }
        self.logger.debug(f"Creating device {device_id} on {self.host_name}")
        result = await self._request('PUT', self._device_url(device_id), body=body)
        return self._to_identity(result or body)

    async def delete_device(self, device_id: str) -> None:
        self.logger.debug(f"Deleting device {device_id} on {self.host_name}")
        await self._request('DELETE', self._device_url(device_id),
                            headers={'If-Match': '*'}, device_id=device_id)

    async def get_device(self, device_id: str) -> DeviceIdentity:
        result = await self._request('GET', self._device_url(device_id), device_id=device_id)
        return self._to_identity(result)

    async def list_devices(self) -> List[str]:
        result = await self._request('GET', f"{self.endpoint}/devices")
        return [device['deviceId'] for device in (result or [])]

    def _to_identity(self, data: Dict[str, Any]) -> DeviceIdentity:
        thumbprints = data.get('authentication', {}).get('x509Thumbprint', {})
        return DeviceIdentity(
            device_id=data['deviceId'],
            host_name=self.host_name,
            thumbprint=thumbprints.get('primaryThumbprint') or '',
        )

    async def close(self) -> None:
        """Close HTTP session"""
        if self.session and not self.session.closed:
            await self.session.close()
