"""
Tests for the HTTP surface.

Runs the aiohttp application in-process (aiohttp.test_utils) with a fake
rendering engine and a mocked upstream.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-SV-N-01 | GET /proxy document | Equivalence – normal | 200 rewritten HTML | Public origin used |
| TC-SV-N-02 | GET /proxy script | Equivalence – direct | 200 JS, cached, CORS | - |
| TC-SV-N-03 | GET /proxy tracking pixel | Equivalence – tracking | 204 empty | - |
| TC-SV-N-04 | POST /proxy API | Equivalence – forward | Body forwarded | - |
| TC-SV-N-05 | GET /health | Equivalence – normal | 200 JSON | - |
| TC-SV-N-06 | OPTIONS /proxy | Equivalence – CORS | 204 with CORS headers | - |
| TC-SV-N-07 | GET / | Equivalence – normal | Usage JSON | - |
| TC-SV-N-08 | GET /resource | Equivalence – direct | 200 | - |
| TC-SV-N-09 | GET /proxy-simple | Equivalence – direct | Raw document | - |
| TC-SV-A-01 | /proxy?url=not-a-url | Abnormal – input | 400 Invalid URL format | - |
| TC-SV-A-02 | /proxy without url | Abnormal – input | 400 URL parameter is required | - |
| TC-SV-A-03 | /proxy?mode=gif | Abnormal – input | 400 | - |
| TC-SV-A-04 | Navigation timeout | Abnormal – navigation | 504 JSON | - |
| TC-SV-A-05 | Unexpected exception | Abnormal – internal | 500 JSON | - |
"""

from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from aiohttp import test_utils

pytestmark = pytest.mark.integration

from renderproxy.crawler.browser_session import RenderSessionManager
from renderproxy.crawler.http_fetcher import DirectFetcher
from renderproxy.crawler.navigation import NavigationStrategy
from renderproxy.crawler.resource_classifier import ResourceClassifier
from renderproxy.proxy.dispatcher import RequestDispatcher
from renderproxy.proxy.server import create_app
from renderproxy.utils.config import ClassifierConfig, FetcherConfig, ServerConfig, Settings
from tests.conftest import FakeLauncher, FakePage

PUBLIC_ORIGIN = "http://localhost:3000"


def upstream_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith(".js"):
        return httpx.Response(
            200, content=b"var x;", headers={"content-type": "application/javascript"}
        )
    if request.url.path.startswith("/api/"):
        return httpx.Response(200, content=request.content, headers={"content-type": "text/plain"})
    return httpx.Response(200, text="<p>plain</p>", headers={"content-type": "text/html"})


def build_dispatcher(launcher: FakeLauncher, navigation_config) -> RequestDispatcher:
    classifier = ResourceClassifier(ClassifierConfig())
    return RequestDispatcher(
        RenderSessionManager(launcher),
        DirectFetcher(
            FetcherConfig(),
            classifier=classifier,
            client=httpx.AsyncClient(transport=httpx.MockTransport(upstream_handler)),
        ),
        NavigationStrategy(navigation_config),
        classifier=classifier,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(server=ServerConfig(public_origin=PUBLIC_ORIGIN))


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest_asyncio.fixture
async def dispatcher(launcher, fast_navigation_config):
    return build_dispatcher(launcher, fast_navigation_config)


@pytest_asyncio.fixture
async def client(settings, dispatcher):
    app = create_app(settings, dispatcher)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client


class TestProxyEndpoint:
    """Tests for /proxy."""

    @pytest.mark.asyncio
    async def test_document(self, client, launcher):
        """A document is rendered and rewritten (TC-SV-N-01)."""
        # Given: The default fake page referencing /app.js
        # When: Requesting it through the proxy
        resp = await client.get("/proxy", params={"url": "https://example.com/"})

        # Then: Rewritten HTML using the public origin
        assert resp.status == 200
        assert resp.headers["Content-Type"] == "text/html; charset=utf-8"
        assert resp.headers["X-Proxied-URL"] == "https://example.com/"
        body = await resp.text()
        assert (
            'src="http://localhost:3000/proxy?url=https%3A%2F%2Fexample.com%2Fapp.js"' in body
        )
        assert launcher.calls == 1

    @pytest.mark.asyncio
    async def test_script(self, client, launcher):
        """Scripts are served directly with caching and CORS (TC-SV-N-02)."""
        resp = await client.get("/proxy", params={"url": "https://example.com/app.js"})

        assert resp.status == 200
        assert await resp.read() == b"var x;"
        assert resp.headers["Content-Type"] == "application/javascript"
        assert resp.headers["Cache-Control"] == "public, max-age=3600"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert launcher.calls == 0

    @pytest.mark.asyncio
    async def test_tracking_pixel(self, client):
        """Tracking beacons get an empty 204 (TC-SV-N-03)."""
        resp = await client.get(
            "/proxy", params={"url": "https://www.google-analytics.com/collect?v=1&t=pageview"}
        )

        assert resp.status == 204
        assert await resp.read() == b""

    @pytest.mark.asyncio
    async def test_api_post(self, client):
        """POST bodies reach API upstreams (TC-SV-N-04)."""
        resp = await client.post(
            "/proxy",
            params={"url": "https://example.com/api/submit"},
            data=b"payload=1",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert resp.status == 200
        assert await resp.read() == b"payload=1"

    @pytest.mark.asyncio
    async def test_options_preflight(self, client):
        """Preflights are answered without touching the dispatcher (TC-SV-N-06)."""
        resp = await client.options(
            "/proxy",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert resp.status == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]


class TestProxyErrors:
    @pytest.mark.asyncio
    async def test_invalid_url(self, client):
        """An unparseable URL is a 400 (TC-SV-A-01)."""
        resp = await client.get("/proxy", params={"url": "not-a-url"})

        assert resp.status == 400
        data = await resp.json()
        assert data["error"] == "Invalid URL format"
        assert data["error_code"] == "INVALID_URL"

    @pytest.mark.asyncio
    async def test_missing_url(self, client):
        """A missing url is a 400 (TC-SV-A-02)."""
        resp = await client.get("/proxy")

        assert resp.status == 400
        data = await resp.json()
        assert data["error"] == "URL parameter is required"

    @pytest.mark.asyncio
    async def test_unknown_mode(self, client):
        """An unknown mode is a 400 (TC-SV-A-03)."""
        resp = await client.get("/proxy", params={"url": "https://example.com/", "mode": "gif"})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_PARAMS"

    @pytest.mark.asyncio
    async def test_navigation_timeout(self, settings, fast_navigation_config):
        """Exhausted navigation is a 504 JSON error (TC-SV-A-04)."""
        launcher = FakeLauncher(page_factory=lambda: FakePage(goto_outcomes=["timeout"] * 4))
        app = create_app(settings, build_dispatcher(launcher, fast_navigation_config))

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/proxy", params={"url": "https://slow.example.com/"})

            assert resp.status == 504
            data = await resp.json()
            assert data["message"] == "Page load timeout. The website took too long to load."
            assert data["error_code"] == "NAVIGATION_TIMEOUT"
            assert data["details"]["attempts"] == [
                "networkidle",
                "networkquiet",
                "load",
                "domcontentloaded",
            ]

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, settings, dispatcher):
        """Unexpected failures become a 500 JSON body (TC-SV-A-05)."""
        dispatcher.health = MagicMock(side_effect=RuntimeError("boom"))
        app = create_app(settings, dispatcher)

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/health")

            assert resp.status == 500
            data = await resp.json()
            assert data["error_code"] == "INTERNAL_ERROR"
            assert data["message"] == "boom"


class TestAuxiliaryEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client):
        """Health reports liveness without launching the engine (TC-SV-N-05)."""
        resp = await client.get("/health")

        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["renderer"] == "not initialized"
        assert data["session_state"] == "uninitialized"

    @pytest.mark.asyncio
    async def test_index(self, client):
        """The root lists the endpoints (TC-SV-N-07)."""
        resp = await client.get("/")

        data = await resp.json()
        assert data["endpoints"]["proxy"] == "http://localhost:3000/proxy?url=YOUR_URL"
        assert "screenshot" in data["endpoints"]

    @pytest.mark.asyncio
    async def test_resource(self, client):
        """/resource serves sub-resources directly (TC-SV-N-08)."""
        resp = await client.get("/resource", params={"url": "https://cdn.example.com/lib.js"})

        assert resp.status == 200
        assert await resp.read() == b"var x;"

    @pytest.mark.asyncio
    async def test_proxy_simple(self, client, launcher):
        """/proxy-simple returns the raw document (TC-SV-N-09)."""
        resp = await client.get("/proxy-simple", params={"url": "https://example.com/page"})

        assert resp.status == 200
        assert await resp.text() == "<p>plain</p>"
        assert launcher.calls == 0
