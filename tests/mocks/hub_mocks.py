"""
Mock collaborators for HubProbe tests.
"""
import asyncio
from typing import Dict, List, Optional, Sequence

from aiohttp import web
from aiohttp.test_utils import TestServer

from src.core.errors import RegistryError
from src.models.message import PROPERTY_KEY, ReceivedMessage


def received(payload: str, value: str, key: str = PROPERTY_KEY,
             lock_token: str = "lock-1", **extra_properties) -> ReceivedMessage:
    """Build a received message the way a device client would hand it back."""
    properties = {key: value}
    properties.update(extra_properties)
    return ReceivedMessage(data=payload.encode("utf-8"), properties=properties,
                           lock_token=lock_token)


class FakeClock:
    """Monotonic clock that advances only when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedDeviceClient:
    """
    Device client that returns a scripted sequence of receive results.

    Each receive advances the fake clock by the requested timeout (or by
    `poll_cost` for non-blocking polls) to simulate the time spent waiting.
    """

    def __init__(self, script: Sequence[Optional[ReceivedMessage]] = (),
                 clock: Optional[FakeClock] = None, poll_cost: float = 0.01):
        self.script: List[Optional[ReceivedMessage]] = list(script)
        self.clock = clock
        self.poll_cost = poll_cost
        self.receive_timeouts: List[Optional[float]] = []
        self.completed: List[ReceivedMessage] = []
        self.sent = []
        self.opened = False
        self.closed = False

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    async def send(self, message):
        self.sent.append(message)

    async def receive(self, timeout: Optional[float] = None):
        self.receive_timeouts.append(timeout)
        if self.clock is not None:
            self.clock.advance(timeout if timeout is not None else self.poll_cost)
        await asyncio.sleep(0)
        if self.script:
            return self.script.pop(0)
        return None

    async def complete(self, message: ReceivedMessage):
        self.completed.append(message)


class FailingRegistry:
    """Wraps a registry and fails selected operations."""

    def __init__(self, inner, fail_create: bool = False, fail_delete: bool = False,
                 fail_list: bool = False):
        self.inner = inner
        self.fail_create = fail_create
        self.fail_delete = fail_delete
        self.fail_list = fail_list
        self.delete_calls: List[str] = []

    async def create_device_with_certificate(self, device_id, credential):
        if self.fail_create:
            raise RegistryError("quota exceeded", status=403)
        return await self.inner.create_device_with_certificate(device_id, credential)

    async def delete_device(self, device_id):
        self.delete_calls.append(device_id)
        if self.fail_delete:
            raise RegistryError("registry unavailable", status=503)
        await self.inner.delete_device(device_id)

    async def get_device(self, device_id):
        return await self.inner.get_device(device_id)

    async def list_devices(self):
        if self.fail_list:
            raise RegistryError("registry unavailable", status=503)
        return await self.inner.list_devices()

    async def close(self):
        await self.inner.close()


class FakeHubService:
    """
    Minimal hub REST surface served by aiohttp's test server.

    Covers the registry device routes and the device-side HTTPS messaging
    routes. Every request is recorded for assertions.
    """

    def __init__(self):
        self.devices: Dict[str, dict] = {}
        self.device_bound: Dict[str, List[dict]] = {}
        self.events: List[dict] = []
        self.requests: List[dict] = []
        self.fail_status: Optional[int] = None
        self.server: Optional[TestServer] = None

        self.app = web.Application(middlewares=[self._record])
        self.app.router.add_get('/devices', self.list_devices)
        self.app.router.add_put('/devices/{device_id}', self.put_device)
        self.app.router.add_get('/devices/{device_id}', self.get_device)
        self.app.router.add_delete('/devices/{device_id}', self.delete_device)
        self.app.router.add_get('/devices/{device_id}/messages/deviceBound', self.receive)
        self.app.router.add_delete('/devices/{device_id}/messages/deviceBound/{lock}', self.complete)
        self.app.router.add_post('/devices/{device_id}/messages/events', self.post_event)

    @property
    def endpoint(self) -> str:
        return str(self.server.make_url('/')).rstrip('/')

    async def start(self):
        self.server = TestServer(self.app)
        await self.server.start_server()

    async def close(self):
        if self.server is not None:
            await self.server.close()

    def queue_message(self, device_id: str, body: bytes, properties: Dict[str, str],
                      message_id: str = "mid-1", lock: str = "lock-1"):
        self.device_bound.setdefault(device_id, []).append({
            'body': body, 'properties': properties, 'message_id': message_id, 'lock': lock,
        })

    @web.middleware
    async def _record(self, request, handler):
        self.requests.append({
            'method': request.method,
            'path': request.path,
            'query': dict(request.query),
            'headers': dict(request.headers),
        })
        if self.fail_status is not None:
            return web.Response(status=self.fail_status, text="injected failure")
        return await handler(request)

    async def list_devices(self, request):
        return web.json_response(list(self.devices.values()))

    async def put_device(self, request):
        body = await request.json()
        device_id = request.match_info['device_id']
        if device_id in self.devices:
            return web.Response(status=409, text="DeviceAlreadyExists")
        self.devices[device_id] = body
        return web.json_response(body)

    async def get_device(self, request):
        device = self.devices.get(request.match_info['device_id'])
        if device is None:
            return web.Response(status=404, text="DeviceNotFound")
        return web.json_response(device)

    async def delete_device(self, request):
        if self.devices.pop(request.match_info['device_id'], None) is None:
            return web.Response(status=404, text="DeviceNotFound")
        return web.Response(status=204)

    async def receive(self, request):
        queue = self.device_bound.get(request.match_info['device_id'])
        if not queue:
            return web.Response(status=204)
        message = queue[0]
        headers = {f"iothub-app-{k}": v for k, v in message['properties'].items()}
        headers['iothub-messageid'] = message['message_id']
        headers['ETag'] = f'"{message["lock"]}"'
        return web.Response(body=message['body'], headers=headers)

    async def complete(self, request):
        queue = self.device_bound.get(request.match_info['device_id'], [])
        lock = request.match_info['lock']
        for index, message in enumerate(queue):
            if message['lock'] == lock:
                del queue[index]
                return web.Response(status=204)
        return web.Response(status=412, text="PreconditionFailed")

    async def post_event(self, request):
        self.events.append({
            'device_id': request.match_info['device_id'],
            'body': await request.read(),
            'headers': dict(request.headers),
        })
        return web.Response(status=204)
