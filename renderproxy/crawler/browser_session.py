"""
Render session management.

Owns the single rendering-engine (Playwright Chromium) instance shared by
all requests. State machine:

    UNINITIALIZED -> INITIALIZING -> READY
    INITIALIZING  -> UNINITIALIZED   (launch failed; retried on next acquire)
    READY         -> UNINITIALIZED   (browser disconnected)
    any           -> CLOSED          (process shutdown)

Concurrent ``acquire()`` calls during INITIALIZING wait on a condition for
the in-flight launch instead of starting a second one.
"""

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright, Route

from renderproxy.crawler.interceptor import InterceptDecision, RequestInterceptor
from renderproxy.proxy.errors import SessionLaunchFailed
from renderproxy.utils.config import BrowserConfig, get_settings
from renderproxy.utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    """Render session lifecycle states."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


def resolve_executable_path(
    config: BrowserConfig,
    exists: Callable[[str], bool] = os.path.exists,
) -> str | None:
    """Find the browser executable for the configured profile.

    Search order: explicit override, then the configured install
    locations in order. The production profile always uses the bundled
    Chromium.

    Args:
        config: Browser configuration.
        exists: Filesystem probe (injectable for tests).

    Returns:
        Executable path, or None to use the bundled Chromium.
    """
    if config.profile == "production":
        return None

    if config.executable_path:
        if exists(config.executable_path):
            return config.executable_path
        logger.warning(
            "Configured browser executable not found, searching known locations",
            path=config.executable_path,
        )

    for candidate in config.executable_search_paths:
        if exists(candidate):
            logger.info("Found browser executable", path=candidate)
            return candidate

    logger.info("No system browser found, using bundled Chromium")
    return None


def build_launch_args(config: BrowserConfig) -> list[str]:
    """Profile-specific launch flags followed by the hardening flags."""
    base = config.production_args if config.profile == "production" else config.development_args
    args = list(base)
    for flag in config.hardening_args:
        if flag not in args:
            args.append(flag)
    return args


def _route_handler(
    interceptor: RequestInterceptor,
) -> Callable[["Route"], Awaitable[None]]:
    """Playwright route handler applying ``interceptor`` to each sub-request."""

    async def handle(route: "Route") -> None:
        request = route.request
        if interceptor(request.url, request.resource_type) is InterceptDecision.DENY:
            await route.abort("blockedbyclient")
        else:
            await route.continue_()

    return handle


class RenderSession:
    """
    One running rendering-engine process.

    Pages are handed out through ``page()``, a scoped context that always
    closes the page and its browser context, whatever the exit path.
    """

    def __init__(
        self,
        playwright: "Playwright",
        browser: "Browser",
        config: BrowserConfig,
        interceptor: RequestInterceptor | None = None,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._config = config
        self._interceptor = interceptor

    def is_alive(self) -> bool:
        """Whether the underlying browser is still connected."""
        return self._browser.is_connected()

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        """Register a callback for browser disconnection."""
        self._browser.on("disconnected", lambda _browser: callback())

    @asynccontextmanager
    async def page(self) -> AsyncIterator["Page"]:
        """Open a fresh page in its own browser context.

        Yields:
            Playwright page used for exactly one navigation.
        """
        context = await self._browser.new_context(
            viewport={
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
            user_agent=self._config.user_agent,
            bypass_csp=self._config.bypass_csp,
        )
        page = None
        try:
            page = await context.new_page()
            if self._interceptor is not None:
                await page.route("**/*", _route_handler(self._interceptor))
            yield page
        finally:
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    logger.debug("Page close failed", error=str(e))
            try:
                await context.close()
            except Exception as e:
                logger.debug("Browser context close failed", error=str(e))

    async def close(self) -> None:
        """Close the browser and stop the driver."""
        try:
            await self._browser.close()
        except Exception as e:
            logger.debug("Browser close failed", error=str(e))
        try:
            await self._playwright.stop()
        except Exception as e:
            logger.debug("Playwright stop failed", error=str(e))


class BrowserLauncher(Protocol):
    """Starts a rendering engine and returns a session wrapping it."""

    async def launch(self) -> RenderSession: ...


class PlaywrightLauncher:
    """Launches Chromium through Playwright using the deployment profile."""

    def __init__(
        self,
        config: BrowserConfig | None = None,
        interceptor: RequestInterceptor | None = None,
    ) -> None:
        self._config = config or get_settings().browser
        self._interceptor = interceptor

    async def launch(self) -> RenderSession:
        from playwright.async_api import async_playwright

        config = self._config
        executable_path = resolve_executable_path(config)
        args = build_launch_args(config)
        headless = True if config.profile == "production" else config.headless

        logger.info(
            "Launching browser",
            profile=config.profile,
            executable_path=executable_path or "bundled",
            headless=headless,
        )

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=headless,
                executable_path=executable_path,
                args=args,
            )
        except BaseException:
            await playwright.stop()
            raise

        return RenderSession(playwright, browser, config, self._interceptor)


class RenderSessionManager:
    """
    Owns the process-wide RenderSession.

    Only this class transitions the session state. ``acquire()`` launches at
    most once at a time; callers arriving during a launch wait for it and
    share its result.
    """

    def __init__(self, launcher: BrowserLauncher) -> None:
        self._launcher = launcher
        self._condition = asyncio.Condition()
        self._state = SessionState.UNINITIALIZED
        self._session: RenderSession | None = None
        self._generation = 0  # bumped whenever a launch attempt settles
        self._last_error: BaseException | None = None
        self.launch_count = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is SessionState.READY

    def _handle_disconnect(self, session: RenderSession) -> None:
        if self._session is session and self._state is SessionState.READY:
            logger.warning("Render session disconnected")
            self._session = None
            self._state = SessionState.UNINITIALIZED

    async def acquire(self) -> RenderSession:
        """Return a ready session, launching one if needed.

        Raises:
            SessionLaunchFailed: The launch this caller started or waited
                on failed, or the manager is shut down.
        """
        stale: RenderSession | None = None

        async with self._condition:
            while True:
                if self._state is SessionState.CLOSED:
                    raise SessionLaunchFailed("render session manager is shut down")

                if self._state is SessionState.READY:
                    if self._session is not None and self._session.is_alive():
                        return self._session
                    logger.warning("Render session no longer alive, relaunching")
                    stale = self._session
                    self._session = None
                    self._state = SessionState.UNINITIALIZED

                if self._state is SessionState.INITIALIZING:
                    generation = self._generation
                    await self._condition.wait_for(lambda: self._generation != generation)
                    if self._state is SessionState.UNINITIALIZED and self._last_error is not None:
                        raise SessionLaunchFailed(self._last_error)
                    continue

                break

            self._state = SessionState.INITIALIZING

        if stale is not None:
            await stale.close()

        try:
            self.launch_count += 1
            session = await self._launcher.launch()
        except BaseException as e:
            async with self._condition:
                if self._state is SessionState.INITIALIZING:
                    self._state = SessionState.UNINITIALIZED
                self._last_error = e
                self._generation += 1
                self._condition.notify_all()
            if isinstance(e, Exception):
                logger.error("Browser launch failed", error=str(e))
                raise SessionLaunchFailed(e) from e
            raise

        async with self._condition:
            if self._state is SessionState.CLOSED:
                closed_during_launch = True
            else:
                closed_during_launch = False
                self._session = session
                self._state = SessionState.READY
                self._last_error = None
            self._generation += 1
            self._condition.notify_all()

        if closed_during_launch:
            await session.close()
            raise SessionLaunchFailed("render session manager was shut down during launch")

        session.on_disconnect(lambda: self._handle_disconnect(session))
        logger.info("Render session ready", launch_count=self.launch_count)
        return session

    async def shutdown(self) -> None:
        """Close the session for good. Called on process termination only."""
        async with self._condition:
            session = self._session
            self._session = None
            self._state = SessionState.CLOSED
            self._generation += 1
            self._condition.notify_all()

        if session is not None:
            logger.info("Closing render session")
            await session.close()

    def to_dict(self) -> dict[str, Any]:
        """Health snapshot."""
        return {
            "state": self._state.value,
            "initialized": self.is_initialized,
            "launch_count": self.launch_count,
            "last_error": str(self._last_error) if self._last_error else None,
        }
