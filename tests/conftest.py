"""
Pytest fixtures and configuration for renderproxy tests.

=============================================================================
Test Classification
=============================================================================

- @pytest.mark.unit: Single class/function, no external dependencies
  - DEFAULT: Tests without marker are auto-classified as unit
- @pytest.mark.integration: Several components wired together, engine and
  upstream servers replaced by fakes (aiohttp TestServer, httpx.MockTransport)
- @pytest.mark.e2e: Real Chromium and network access. Excluded by default:
  pytest -m e2e

=============================================================================
Mock Strategy
=============================================================================

- Rendering engine: the Fake* Playwright objects below. They record every
  call so tests can assert on wait conditions, timeouts and cleanup.
- Upstream HTTP: httpx.MockTransport; unit tests never touch the network.
"""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Set test environment before importing anything else
os.environ["RENDERPROXY_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["RENDERPROXY_GENERAL__LOG_LEVEL"] = "DEBUG"

from playwright.async_api import Error as PlaywrightError  # noqa: E402
from playwright.async_api import TimeoutError as PlaywrightTimeoutError  # noqa: E402

from renderproxy.crawler.browser_session import RenderSession  # noqa: E402
from renderproxy.utils.config import (  # noqa: E402
    BrowserConfig,
    NavigationConfig,
    NavigationStepConfig,
    get_settings,
)

# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line("markers", "unit: Unit tests with no external dependencies")
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked external dependencies"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring a real browser (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without explicit markers are assumed to be unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fake Playwright objects
# =============================================================================

PAGE_HTML = (
    "<!DOCTYPE html><html><head><title>Example</title>"
    '<script src="/app.js"></script></head>'
    "<body><h1>Hello</h1></body></html>"
)


class FakeResponse:
    """Main-document response returned by FakePage.goto."""

    def __init__(self, status: int = 200):
        self.status = status


class FakePage:
    """Playwright Page stand-in.

    ``goto_outcomes`` is consumed one entry per ``goto`` call:
    - "timeout": raise PlaywrightTimeoutError
    - an exception instance: raise it
    - anything else (or exhausted list): commit with a 200 response
    """

    def __init__(
        self,
        html: str = PAGE_HTML,
        *,
        goto_outcomes: list[Any] | None = None,
        final_url: str | None = None,
    ):
        self.html = html
        self.goto_outcomes = list(goto_outcomes or [])
        self.final_url = final_url
        self.url = "about:blank"
        self.goto_calls: list[dict[str, Any]] = []
        self.evaluated: list[str] = []
        self.routes: list[tuple[str, Callable]] = []
        self.listeners: dict[str, list[Callable]] = {}
        self.closed = False

    async def goto(self, url: str, *, wait_until: str, timeout: int) -> FakeResponse:
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        outcome = self.goto_outcomes.pop(0) if self.goto_outcomes else None
        if outcome == "timeout":
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        if isinstance(outcome, BaseException):
            raise outcome
        self.url = self.final_url or url
        return FakeResponse(200)

    @property
    def wait_conditions(self) -> list[str]:
        return [call["wait_until"] for call in self.goto_calls]

    async def content(self) -> str:
        return self.html

    async def evaluate(self, expression: str) -> None:
        self.evaluated.append(expression)

    async def wait_for_load_state(
        self, state: str = "load", *, timeout: float | None = None
    ) -> None:
        return None

    async def screenshot(self, *, full_page: bool = False, type: str = "png") -> bytes:
        return b"\x89PNG\r\n\x1a\nfake"

    async def pdf(self, *, format: str = "A4", print_background: bool = False) -> bytes:
        return b"%PDF-1.4 fake"

    async def route(self, pattern: str, handler: Callable) -> None:
        self.routes.append((pattern, handler))

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners.get(event, []).remove(handler)

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    """Playwright BrowserContext stand-in handing out one page."""

    def __init__(self, page: FakePage, options: dict[str, Any]):
        self.page = page
        self.options = options
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    """Playwright Browser stand-in.

    ``page_factory`` builds the page for every new context, so each request
    gets its own FakePage like in the real engine.
    """

    def __init__(self, page_factory: Callable[[], FakePage] | None = None):
        self.page_factory = page_factory or FakePage
        self.contexts: list[FakeContext] = []
        self.connected = True
        self.closed = False
        self._handlers: dict[str, list[Callable]] = {}

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(self.page_factory(), options)
        self.contexts.append(context)
        return context

    def is_connected(self) -> bool:
        return self.connected

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def disconnect(self) -> None:
        """Simulate the engine process going away."""
        self.connected = False
        for handler in self._handlers.get("disconnected", []):
            handler(self)

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakePlaywright:
    def __init__(self):
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


class FakeLauncher:
    """BrowserLauncher stand-in.

    Args:
        failures: Number of launches that raise before launches succeed.
        delay: Seconds each launch takes, so concurrent callers overlap.
        page_factory: Page factory passed to every FakeBrowser.
    """

    def __init__(
        self,
        *,
        failures: int = 0,
        delay: float = 0.0,
        page_factory: Callable[[], FakePage] | None = None,
        interceptor: Any = None,
    ):
        self.failures = failures
        self.delay = delay
        self.page_factory = page_factory
        self.interceptor = interceptor
        self.calls = 0
        self.browsers: list[FakeBrowser] = []

    async def launch(self) -> RenderSession:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise PlaywrightError("Failed to launch chromium because executable doesn't exist")
        browser = FakeBrowser(self.page_factory)
        self.browsers.append(browser)
        return RenderSession(FakePlaywright(), browser, BrowserConfig(), self.interceptor)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; reset around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_navigation_config() -> NavigationConfig:
    """Navigation config with the production chain but no settle delays."""
    return NavigationConfig(
        strategies=[
            NavigationStepConfig(condition="networkidle", timeout=45.0),
            NavigationStepConfig(condition="networkquiet", timeout=45.0),
            NavigationStepConfig(condition="load", timeout=30.0),
            NavigationStepConfig(condition="domcontentloaded", timeout=20.0),
        ],
        settle_delay=0.0,
        post_scroll_delay=0.0,
        quiet_period=0.0,
    )


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()
