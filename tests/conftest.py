"""
Pytest configuration and fixtures for IPTV relay tests.
"""
import httpx
import pytest
import pytest_asyncio

from iptv_relay.config import Settings
from iptv_relay.main import app
from iptv_relay.services.stream_proxy import StreamProxyService, get_proxy_service


@pytest.fixture
def sample_media_playlist():
    """Live media playlist with relative segments."""
    return """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:4
#EXT-X-MEDIA-SEQUENCE:12345
#EXTINF:4.000,
seg1.ts
#EXTINF:4.000,
seg2.ts
"""


@pytest.fixture
def sample_master_playlist():
    """Master playlist mixing absolute, host-absolute and relative variants."""
    return """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=1280000,RESOLUTION=1280x720
https://cdn.example.com/hls/720/index.m3u8

#EXT-X-STREAM-INF:BANDWIDTH=640000,RESOLUTION=640x360
/hls/360/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=320000,RESOLUTION=426x240
240/index.m3u8"""


@pytest.fixture
def proxy_settings():
    return Settings(public_base_url=None, proxy_rate_limit_per_minute=1000)


@pytest.fixture
def upstream():
    """
    Fake upstream server. Tests register responses per URL and inspect the
    requests the proxy made.
    """
    class Upstream:
        def __init__(self):
            self.routes = {}
            self.requests = []

        def add(self, url, response=None, exc=None):
            self.routes[url] = (response, exc)

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            response, exc = self.routes.get(str(request.url), (None, None))
            if exc is not None:
                raise exc
            if response is None:
                return httpx.Response(404)
            return response

    return Upstream()


@pytest_asyncio.fixture
async def proxy_client(upstream, proxy_settings):
    """ASGI client for the app with the proxy wired to the fake upstream."""
    service = StreamProxyService(settings=proxy_settings, transport=httpx.MockTransport(upstream.handler))
    app.dependency_overrides[get_proxy_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
    await service.aclose()


class FakeHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Simulated clock with the call_later/time subset of an event loop."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.handles.remove(handle)
            self.now = handle.when
            handle.callback(*handle.args)
        self.now = target


class FakeEngine:
    """Records every call the session makes; `emit` plays engine callbacks."""

    def __init__(self, emit):
        self.emit = emit
        self.calls = []
        self.destroyed = False

    def load_source(self, url):
        self.calls.append(("load_source", url))

    def start_load(self):
        self.calls.append(("start_load",))

    def recover_media_error(self):
        self.calls.append(("recover_media_error",))

    def play(self):
        self.calls.append(("play",))

    def destroy(self):
        self.destroyed = True

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeEngineFactory:
    def __init__(self):
        self.engines = []

    def __call__(self, emit):
        engine = FakeEngine(emit)
        self.engines.append(engine)
        return engine

    @property
    def live(self):
        return [e for e in self.engines if not e.destroyed]

    @property
    def last(self):
        return self.engines[-1]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def engine_factory():
    return FakeEngineFactory()
