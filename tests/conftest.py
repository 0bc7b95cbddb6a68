import asyncio
from typing import Any, List

import httpx
import pytest

from agent.socfeed.backend.channel import Channel, ChannelMessage
from agent.socfeed.backend.client import BackendClient
from agent.socfeed.config.schema import SocFeedConfig
from agent.socfeed.errors import ChannelError

# Captured before any test patches asyncio.sleep
_real_sleep = asyncio.sleep

_CLOSE = object()


class FakeChannel(Channel):
    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.opened = False
        self.closed = False
        self.sent: List[tuple] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def open(self):
        if self.fail_open:
            raise ChannelError("connection refused")
        self.opened = True

    async def send(self, event: str, data: Any = None):
        self.sent.append((event, data))

    async def messages(self):
        while True:
            item = await self._inbox.get()
            if item is _CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self):
        self.closed = True

    def push(self, event: str, data: Any = None):
        self._inbox.put_nowait(ChannelMessage(event, data))

    def drop(self, error: Exception = None):
        self._inbox.put_nowait(error if error else _CLOSE)


class FakeChannelFactory:
    def __init__(self, always_fail: bool = False):
        self.always_fail = always_fail
        self.channels: List[FakeChannel] = []

    def __call__(self) -> FakeChannel:
        channel = FakeChannel(fail_open=self.always_fail)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


async def _wait_until(predicate, timeout: float = 2.0):
    async def poll():
        while not predicate():
            await _real_sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def channel_factory():
    return FakeChannelFactory()


@pytest.fixture
def wire_threat():
    def make(**overrides):
        payload = {
            "id": "T-1",
            "timestamp": "2024-03-01T12:00:00Z",
            "source_ip": "203.0.113.7",
            "destination_ip": "10.0.0.5",
            "threat_type": "port_scan",
            "severity": 5,
            "confidence": 0.5,
            "description": "Port scan detected",
            "indicators": ["syn_flood", "sequential_ports"],
            "blocked": False,
        }
        payload.update(overrides)
        return payload

    return make


@pytest.fixture
def stats_payload():
    return {
        "total_threats": 12,
        "active_threats": 3,
        "blocked_ips": 2,
        "threats_last_hour": 4,
        "threats_last_24h": 12,
        "threat_types": {"port_scan": 7, "brute_force": 5},
        "top_threat_ips": [
            {"ip": "203.0.113.7", "threat_count": 6, "max_severity": 9, "blocked": True},
        ],
        "severity_distribution": {"high": 4, "low": 8},
        "correlations": [],
    }


@pytest.fixture
def test_config():
    return SocFeedConfig(
        backend={"url": "http://backend.test", "backlog_limit": 50},
        reconnect={"base_delay": 0.0, "max_attempts": 2},
        stats={"interval": 0.05},
        monitoring={"interval": 0.01},
    )


class BackendStub:
    """Routes httpx requests to canned responses and records what was asked."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes = {}

    def route(self, method: str, path: str, response):
        self.routes[(method, path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(response):
            return response(request)
        # Fresh copy so a canned response can be served more than once
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def client(self) -> BackendClient:
        return BackendClient("http://backend.test", transport=httpx.MockTransport(self.handler))

    def paths(self, method: str = None) -> List[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]


@pytest.fixture
def backend():
    stub = BackendStub()
    stub.route("GET", "/api/threats", httpx.Response(200, json=[]))
    return stub
