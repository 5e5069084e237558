"""
Request dispatcher.

Top-level orchestration of one proxied request:

    normalize -> classify -> direct fetch            (sub-resources, API calls)
                          -> render + rewrite + shim (documents)

Non-html modes (screenshot, pdf) always render, whatever the class.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from renderproxy.crawler.browser_session import RenderSessionManager
from renderproxy.crawler.fetch_result import FetchResult
from renderproxy.crawler.http_fetcher import NO_CACHE, DirectFetcher
from renderproxy.crawler.navigation import NavigationStrategy
from renderproxy.crawler.resource_classifier import (
    ResourceClass,
    ResourceClassifier,
    get_resource_classifier,
)
from renderproxy.crawler.url_normalizer import TargetURL, normalize_url
from renderproxy.proxy.errors import InvalidParams, MissingParameter
from renderproxy.rewriter.context import RewriteContext
from renderproxy.rewriter.html_rewriter import HTMLRewriter
from renderproxy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class RenderMode(str, Enum):
    """Output of a rendered request."""

    HTML = "html"
    SCREENSHOT = "screenshot"
    PDF = "pdf"


def parse_mode(value: str | None) -> RenderMode:
    """Parse the ``mode`` query parameter (default html)."""
    if not value:
        return RenderMode.HTML
    try:
        return RenderMode(value.strip().lower())
    except ValueError:
        raise InvalidParams(
            f"Unsupported mode '{value}'. Use html, screenshot or pdf.",
            mode=value,
            allowed=[m.value for m in RenderMode],
        ) from None


@dataclass
class ProxyRequest:
    """
    One inbound /proxy request.

    Attributes:
        raw_url: Raw ``url`` query parameter.
        proxy_origin: Origin the client reached the proxy at.
        method: Inbound HTTP method.
        body: Inbound body, forwarded for direct fetches.
        body_content_type: Content-Type of the inbound body.
        mode: Raw ``mode`` query parameter.
    """

    raw_url: str | None
    proxy_origin: str
    method: str = "GET"
    body: bytes | None = None
    body_content_type: str | None = None
    mode: str | None = None


def _document_headers(target: TargetURL) -> dict[str, str]:
    return {
        "X-Proxied-URL": target.url,
        "Access-Control-Allow-Origin": "*",
        "Cache-Control": NO_CACHE,
    }


class RequestDispatcher:
    """Routes proxied requests to the direct fetcher or the renderer."""

    def __init__(
        self,
        session_manager: RenderSessionManager,
        fetcher: DirectFetcher,
        navigation: NavigationStrategy,
        *,
        classifier: ResourceClassifier | None = None,
    ) -> None:
        self.sessions = session_manager
        self._fetcher = fetcher
        self._navigation = navigation
        self._classifier = classifier or get_resource_classifier()

    @staticmethod
    def _target(raw_url: str | None) -> TargetURL:
        if raw_url is None or not raw_url.strip():
            raise MissingParameter("url")
        return normalize_url(raw_url)

    async def dispatch(self, request: ProxyRequest) -> FetchResult:
        """Serve a /proxy request."""
        target = self._target(request.raw_url)
        mode = parse_mode(request.mode)
        resource_class = self._classifier.classify(target)

        with LogContext(target=target.url, resource_class=resource_class.value):
            if mode is RenderMode.HTML and resource_class is not ResourceClass.DOCUMENT:
                result = await self._fetcher.fetch(
                    target,
                    resource_class=resource_class,
                    method=request.method,
                    body=request.body,
                    body_content_type=request.body_content_type,
                )
            else:
                if request.method != "GET":
                    logger.debug("Rendering document via GET", method=request.method)
                result = await self.render(target, mode, request.proxy_origin)

        result.headers.setdefault("X-Proxied-URL", target.url)
        return result

    async def fetch_resource(self, raw_url: str | None) -> FetchResult:
        """Serve a /resource request: direct fetch regardless of class."""
        target = self._target(raw_url)
        result = await self._fetcher.fetch(target, resource_class=ResourceClass.SUBRESOURCE)
        result.headers.setdefault("X-Proxied-URL", target.url)
        return result

    async def fetch_simple(self, raw_url: str | None) -> FetchResult:
        """Serve a /proxy-simple request: plain fetch, no rendering or rewriting."""
        target = self._target(raw_url)
        result = await self._fetcher.fetch(target, resource_class=ResourceClass.DOCUMENT)
        result.headers.setdefault("X-Proxied-URL", target.url)
        return result

    async def render(self, target: TargetURL, mode: RenderMode, proxy_origin: str) -> FetchResult:
        """Render a URL in the shared session and produce the response."""
        session = await self.sessions.acquire()

        async with session.page() as page:
            outcome = await self._navigation.navigate(page, target.url)
            outcome.raise_for_failure()

            if mode is RenderMode.SCREENSHOT:
                body = await page.screenshot(full_page=True, type="png")
                content_type = "image/png"
            elif mode is RenderMode.PDF:
                body = await page.pdf(format="A4", print_background=True)
                content_type = "application/pdf"
            else:
                # Resolve relative references against where the page ended up
                document_url = outcome.url
                if urlsplit(document_url).scheme not in ("http", "https"):
                    document_url = target.url
                context = RewriteContext(proxy_origin=proxy_origin, document_url=document_url)
                rewritten = HTMLRewriter(context).rewrite(outcome.content or "")
                body = rewritten.html.encode("utf-8")
                content_type = "text/html; charset=utf-8"

        logger.info(
            "Rendered document",
            mode=mode.value,
            condition=outcome.condition.value if outcome.condition else None,
            elapsed_ms=round(outcome.elapsed_ms),
            content_length=len(body),
        )

        return FetchResult(
            url=target.url,
            status=200,
            body=body,
            content_type=content_type,
            headers=_document_headers(target),
            method="render",
        )

    def health(self) -> dict[str, Any]:
        """Liveness and session snapshot, without side effects."""
        return {
            "status": "ok",
            "message": "Render proxy server is running",
            "renderer": "connected" if self.sessions.is_initialized else "not initialized",
            "session_state": self.sessions.state.value,
        }

    async def close(self) -> None:
        """Close the render session and the HTTP client."""
        await self.sessions.shutdown()
        await self._fetcher.close()
