"""
Page navigation with an ordered fallback chain of load conditions.

Many sites never reach a fully idle network (polling, ads, websockets) yet
are usable much earlier, so navigation walks a list of progressively looser
``(condition, timeout)`` steps and stops at the first one that commits:

1. networkidle        - no requests in flight for 500 ms
2. networkquiet       - at most N requests in flight for a quiet period
3. load               - the page's load event
4. domcontentloaded   - initial DOM constructed

Only timeouts advance the chain. Name resolution failures, refused
connections and other engine errors end it at once, since a looser wait
condition cannot fix them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

if TYPE_CHECKING:
    from playwright.async_api import Page, Request, Response

from renderproxy.proxy.errors import NavigationFailed, NavigationFailureKind
from renderproxy.utils.config import NavigationConfig, get_settings
from renderproxy.utils.logging import get_logger

logger = get_logger(__name__)


class WaitCondition(str, Enum):
    """Load-completion conditions, strictest first."""

    NETWORK_IDLE = "networkidle"
    NETWORK_QUIET = "networkquiet"
    LOAD = "load"
    DOM_CONTENT_LOADED = "domcontentloaded"


class OutcomeKind(str, Enum):
    COMMITTED = "committed"
    TIMED_OUT = "timed_out"
    NETWORK_ERROR = "network_error"


class NetworkErrorKind(str, Enum):
    UNRESOLVED = "unresolved"
    REFUSED = "refused"
    TIMED_OUT = "timed_out"
    OTHER = "other"


_ERROR_MARKERS: tuple[tuple[str, NetworkErrorKind], ...] = (
    ("net::ERR_NAME_NOT_RESOLVED", NetworkErrorKind.UNRESOLVED),
    ("net::ERR_NAME_RESOLUTION_FAILED", NetworkErrorKind.UNRESOLVED),
    ("net::ERR_CONNECTION_REFUSED", NetworkErrorKind.REFUSED),
    ("net::ERR_TIMED_OUT", NetworkErrorKind.TIMED_OUT),
    ("net::ERR_CONNECTION_TIMED_OUT", NetworkErrorKind.TIMED_OUT),
)


def classify_network_error(message: str) -> NetworkErrorKind:
    """Map an engine error message to a network error kind."""
    for marker, kind in _ERROR_MARKERS:
        if marker in message:
            return kind
    return NetworkErrorKind.OTHER


@dataclass(frozen=True)
class NavigationStep:
    """One entry of the fallback chain."""

    condition: WaitCondition
    timeout: float  # seconds


@dataclass
class NavigationOutcome:
    """
    Result of a navigation.

    Attributes:
        kind: Committed, timed out, or failed with a network error.
        url: Final page URL for committed outcomes, else the target URL.
        condition: Condition that committed.
        content: Serialized DOM after settling (committed only).
        status: HTTP status of the main document response, when known.
        error_kind: Network error kind (network errors only).
        error: Raw engine error text.
        attempts: Conditions attempted, in order.
        elapsed_ms: Total time spent navigating and settling.
    """

    kind: OutcomeKind
    url: str
    condition: WaitCondition | None = None
    content: str | None = None
    status: int | None = None
    error_kind: NetworkErrorKind | None = None
    error: str | None = None
    attempts: list[WaitCondition] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def committed(self) -> bool:
        return self.kind is OutcomeKind.COMMITTED

    @classmethod
    def success(
        cls,
        url: str,
        condition: WaitCondition,
        content: str,
        *,
        status: int | None = None,
        attempts: list[WaitCondition] | None = None,
        elapsed_ms: float = 0.0,
    ) -> "NavigationOutcome":
        return cls(
            kind=OutcomeKind.COMMITTED,
            url=url,
            condition=condition,
            content=content,
            status=status,
            attempts=attempts or [],
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def timed_out(
        cls,
        url: str,
        error: str | None,
        *,
        attempts: list[WaitCondition] | None = None,
        elapsed_ms: float = 0.0,
    ) -> "NavigationOutcome":
        return cls(
            kind=OutcomeKind.TIMED_OUT,
            url=url,
            error=error,
            attempts=attempts or [],
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def network_error(
        cls,
        url: str,
        error_kind: NetworkErrorKind,
        error: str,
        *,
        attempts: list[WaitCondition] | None = None,
        elapsed_ms: float = 0.0,
    ) -> "NavigationOutcome":
        return cls(
            kind=OutcomeKind.NETWORK_ERROR,
            url=url,
            error_kind=error_kind,
            error=error,
            attempts=attempts or [],
            elapsed_ms=elapsed_ms,
        )

    def raise_for_failure(self) -> None:
        """Raise NavigationFailed unless the outcome committed."""
        if self.committed:
            return

        if self.kind is OutcomeKind.TIMED_OUT or self.error_kind is NetworkErrorKind.TIMED_OUT:
            failure = NavigationFailureKind.TIMEOUT
        elif self.error_kind in (NetworkErrorKind.UNRESOLVED, NetworkErrorKind.REFUSED):
            failure = NavigationFailureKind.UNRESOLVED
        else:
            failure = NavigationFailureKind.OTHER

        raise NavigationFailed(
            self.url,
            failure,
            raw_error=self.error,
            attempts=[c.value for c in self.attempts],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "url": self.url,
            "condition": self.condition.value if self.condition else None,
            "status": self.status,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "attempts": [c.value for c in self.attempts],
            "elapsed_ms": self.elapsed_ms,
        }


class NetworkActivityMonitor:
    """Counts in-flight requests of a page through its request events."""

    def __init__(self, page: "Page") -> None:
        self._page = page
        self.inflight = 0
        self._attached = False

    def _on_request(self, request: "Request") -> None:
        self.inflight += 1

    def _on_done(self, request: "Request") -> None:
        self.inflight = max(0, self.inflight - 1)

    def attach(self) -> None:
        self._page.on("request", self._on_request)
        self._page.on("requestfinished", self._on_done)
        self._page.on("requestfailed", self._on_done)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._page.remove_listener("request", self._on_request)
        self._page.remove_listener("requestfinished", self._on_done)
        self._page.remove_listener("requestfailed", self._on_done)
        self._attached = False

    async def wait_quiet(
        self,
        max_inflight: int,
        quiet_period: float,
        poll_interval: float = 0.05,
    ) -> None:
        """Return once at most ``max_inflight`` requests stayed in flight for ``quiet_period``."""
        quiet_since: float | None = None
        while True:
            now = time.monotonic()
            if self.inflight <= max_inflight:
                if quiet_since is None:
                    quiet_since = now
                if now - quiet_since >= quiet_period:
                    return
            else:
                quiet_since = None
            await asyncio.sleep(poll_interval)


# Walk down the page one viewport at a time so IntersectionObserver-based
# lazy loaders fire, then jump to the very bottom.
_SCROLL_TO_BOTTOM = """
async () => {
    const step = Math.max(window.innerHeight, 200);
    for (let i = 0, y = 0; i < 50 && y < document.body.scrollHeight; i++, y += step) {
        window.scrollTo(0, y);
        await new Promise((resolve) => setTimeout(resolve, 100));
    }
    window.scrollTo(0, document.body.scrollHeight);
}
"""

_SCROLL_TO_TOP = "() => window.scrollTo(0, 0)"


class NavigationStrategy:
    """Loads a page through the configured fallback chain, then settles it."""

    def __init__(self, config: NavigationConfig | None = None) -> None:
        self._config = config or get_settings().navigation
        self.steps = [
            NavigationStep(WaitCondition(s.condition), s.timeout) for s in self._config.strategies
        ]
        if not self.steps:
            raise ValueError("navigation requires at least one strategy")

    async def _attempt(self, page: "Page", url: str, step: NavigationStep) -> "Response | None":
        timeout_ms = int(step.timeout * 1000)

        if step.condition is not WaitCondition.NETWORK_QUIET:
            return await page.goto(url, wait_until=step.condition.value, timeout=timeout_ms)

        monitor = NetworkActivityMonitor(page)
        monitor.attach()
        try:
            started = time.monotonic()
            response = await page.goto(url, wait_until="commit", timeout=timeout_ms)
            remaining = max(0.0, step.timeout - (time.monotonic() - started))
            await asyncio.wait_for(
                monitor.wait_quiet(self._config.quiet_max_inflight, self._config.quiet_period),
                timeout=remaining,
            )
            return response
        finally:
            monitor.detach()

    async def _settle(self, page: "Page") -> None:
        """Give deferred and lazy content a chance to run."""
        if self._config.settle_delay > 0:
            await asyncio.sleep(self._config.settle_delay)

        if not self._config.scroll_lazy_content:
            return

        try:
            await page.evaluate(_SCROLL_TO_BOTTOM)
            await page.evaluate(_SCROLL_TO_TOP)
        except PlaywrightError as e:
            logger.debug("Lazy-load scroll failed", error=str(e))

        if self._config.post_scroll_delay > 0:
            await asyncio.sleep(self._config.post_scroll_delay)

    async def _content(self, page: "Page") -> str:
        try:
            return await page.content()
        except PlaywrightError as e:
            # A client-side redirect during settling destroys the context
            logger.debug("Content read failed, waiting for DOM", error=str(e))
            await page.wait_for_load_state(
                "domcontentloaded", timeout=int(self._config.content_timeout * 1000)
            )
            return await page.content()

    async def navigate(self, page: "Page", url: str) -> NavigationOutcome:
        """Navigate ``page`` to ``url``.

        Args:
            page: Page handle owned by the calling request.
            url: Absolute target URL.

        Returns:
            NavigationOutcome describing the committed page or the failure.
        """
        started = time.monotonic()
        attempts: list[WaitCondition] = []
        last_error: str | None = None

        def elapsed_ms() -> float:
            return (time.monotonic() - started) * 1000

        for step in self.steps:
            attempts.append(step.condition)
            logger.debug(
                "Navigation attempt",
                url=url,
                condition=step.condition.value,
                timeout=step.timeout,
            )
            try:
                response = await self._attempt(page, url, step)
            except (PlaywrightTimeoutError, TimeoutError) as e:
                last_error = str(e) or f"{step.condition.value} timed out after {step.timeout}s"
                logger.info(
                    "Navigation condition timed out, falling back",
                    url=url,
                    condition=step.condition.value,
                    timeout=step.timeout,
                )
                continue
            except PlaywrightError as e:
                error_kind = classify_network_error(str(e))
                logger.warning(
                    "Navigation failed",
                    url=url,
                    condition=step.condition.value,
                    error_kind=error_kind.value,
                    error=str(e),
                )
                return NavigationOutcome.network_error(
                    url,
                    error_kind,
                    str(e),
                    attempts=attempts,
                    elapsed_ms=elapsed_ms(),
                )

            try:
                await self._settle(page)
                content = await self._content(page)
            except (PlaywrightTimeoutError, TimeoutError) as e:
                logger.warning(
                    "Content read timed out after commit",
                    url=url,
                    condition=step.condition.value,
                    error=str(e),
                )
                return NavigationOutcome.timed_out(
                    url,
                    str(e) or "content read timed out",
                    attempts=attempts,
                    elapsed_ms=elapsed_ms(),
                )
            except PlaywrightError as e:
                error_kind = classify_network_error(str(e))
                logger.warning(
                    "Content read failed after commit",
                    url=url,
                    condition=step.condition.value,
                    error_kind=error_kind.value,
                    error=str(e),
                )
                return NavigationOutcome.network_error(
                    url,
                    error_kind,
                    str(e),
                    attempts=attempts,
                    elapsed_ms=elapsed_ms(),
                )

            logger.info(
                "Navigation committed",
                url=url,
                condition=step.condition.value,
                attempts=len(attempts),
                status=response.status if response is not None else None,
            )
            return NavigationOutcome.success(
                page.url or url,
                step.condition,
                content,
                status=response.status if response is not None else None,
                attempts=attempts,
                elapsed_ms=elapsed_ms(),
            )

        logger.warning("All navigation strategies timed out", url=url)
        return NavigationOutcome.timed_out(
            url, last_error, attempts=attempts, elapsed_ms=elapsed_ms()
        )
