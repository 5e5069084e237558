"""Direct (non-rendering) fetcher for sub-resources and API calls."""

import mimetypes

import httpx

from renderproxy.crawler.fetch_result import FetchResult
from renderproxy.crawler.resource_classifier import (
    AssetKind,
    ResourceClass,
    ResourceClassifier,
    get_resource_classifier,
)
from renderproxy.crawler.url_normalizer import TargetURL
from renderproxy.proxy.errors import ResourceFetchFailed
from renderproxy.utils.config import FetcherConfig, get_settings
from renderproxy.utils.logging import get_logger

logger = get_logger(__name__)

SCRIPT_CONTENT_TYPE = "application/javascript"
STYLESHEET_CONTENT_TYPE = "text/css"

# Stubs keep the page's script engine from choking on a wrong payload
_STUBS: dict[AssetKind, tuple[bytes, str]] = {
    AssetKind.SCRIPT: (b"", SCRIPT_CONTENT_TYPE),
    AssetKind.STYLESHEET: (b"", STYLESHEET_CONTENT_TYPE),
}

_ACCEPT_BY_KIND: dict[AssetKind, str] = {
    AssetKind.SCRIPT: "*/*",
    AssetKind.STYLESHEET: "text/css,*/*;q=0.1",
    AssetKind.IMAGE: "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    AssetKind.FONT: "*/*",
    AssetKind.MEDIA: "*/*",
    AssetKind.DATA: "application/json, text/plain, */*",
    AssetKind.UNKNOWN: "*/*",
}

_SEC_FETCH_DEST: dict[AssetKind, str] = {
    AssetKind.SCRIPT: "script",
    AssetKind.STYLESHEET: "style",
    AssetKind.IMAGE: "image",
    AssetKind.FONT: "font",
    AssetKind.MEDIA: "video",
    AssetKind.DATA: "empty",
    AssetKind.UNKNOWN: "empty",
}

_DOCUMENT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
_API_ACCEPT = "application/json, text/plain, */*"

_HTML_PREFIXES = (b"<!doctype html", b"<html", b"<head")

NO_CACHE = "no-cache, no-store, must-revalidate"


def looks_like_html(content_type: str, body: bytes) -> bool:
    """Whether a payload is HTML by declared type or by sniffing."""
    if "text/html" in content_type.lower():
        return True
    head = body[:512].lstrip().lower()
    return head.startswith(_HTML_PREFIXES)


def guess_content_type(target: TargetURL) -> str:
    """Content type from the path extension, with a binary fallback."""
    guessed, _ = mimetypes.guess_type(target.path)
    return guessed or "application/octet-stream"


class DirectFetcher:
    """Fetches non-document URLs with a plain HTTP client.

    Features:
    - Browser-like request headers with a same-origin referer
    - Empty script/stylesheet stubs for failed or HTML-challenge responses
    - 204 for tracking beacons, without contacting the upstream
    - CORS and bounded cache headers on successful responses
    """

    def __init__(
        self,
        config: FetcherConfig | None = None,
        *,
        classifier: ResourceClassifier | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_settings().fetcher
        self._classifier = classifier or get_resource_classifier()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout),
            follow_redirects=self._config.follow_redirects,
        )

    def build_headers(
        self,
        target: TargetURL,
        resource_class: ResourceClass,
        kind: AssetKind,
    ) -> dict[str, str]:
        """Build a realistic browser header set for the request."""
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept-Language": self._config.accept_language,
            "Referer": f"{target.origin}/",
            "Sec-Fetch-Site": "same-origin",
        }

        if resource_class is ResourceClass.DOCUMENT:
            headers["Accept"] = _DOCUMENT_ACCEPT
            headers["Sec-Fetch-Dest"] = "document"
            headers["Sec-Fetch-Mode"] = "navigate"
        elif resource_class is ResourceClass.API_CALL:
            headers["Accept"] = _API_ACCEPT
            headers["Origin"] = target.origin
            headers["Sec-Fetch-Dest"] = "empty"
            headers["Sec-Fetch-Mode"] = "cors"
        else:
            headers["Accept"] = _ACCEPT_BY_KIND[kind]
            headers["Sec-Fetch-Dest"] = _SEC_FETCH_DEST[kind]
            headers["Sec-Fetch-Mode"] = "no-cors"

        return headers

    def _success_headers(self, resource_class: ResourceClass) -> dict[str, str]:
        headers = {"Access-Control-Allow-Origin": "*"}
        if resource_class is ResourceClass.SUBRESOURCE:
            headers["Cache-Control"] = f"public, max-age={self._config.cache_max_age}"
        else:
            headers["Cache-Control"] = NO_CACHE
        return headers

    def _stub(self, target: TargetURL, kind: AssetKind, reason: str) -> FetchResult | None:
        """Empty payload of the expected type, or None when no stub applies."""
        stub = _STUBS.get(kind)
        if stub is None:
            return None
        body, content_type = stub
        logger.info(
            "Serving stub for sub-resource",
            url=target.url,
            kind=kind.value,
            reason=reason,
        )
        return FetchResult(
            url=target.url,
            status=200,
            body=body,
            content_type=content_type,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Cache-Control": NO_CACHE,
            },
            stubbed=True,
            reason=reason,
        )

    async def fetch(
        self,
        target: TargetURL,
        *,
        resource_class: ResourceClass = ResourceClass.SUBRESOURCE,
        method: str = "GET",
        body: bytes | None = None,
        body_content_type: str | None = None,
    ) -> FetchResult:
        """Fetch a URL directly.

        Args:
            target: Normalized target URL.
            resource_class: Routing class; drives headers and caching.
            method: HTTP method to forward.
            body: Request body to forward verbatim (API calls).
            body_content_type: Content-Type of the forwarded body.

        Returns:
            FetchResult ready to be returned to the client.

        Raises:
            ResourceFetchFailed: Upstream transport error with no stub convention.
        """
        kind = self._classifier.asset_kind(target)

        if resource_class is not ResourceClass.DOCUMENT and self._classifier.is_tracking_pixel(
            target
        ):
            logger.debug("Suppressed tracking beacon", url=target.url)
            return FetchResult(
                url=target.url,
                status=204,
                body=b"",
                content_type="text/plain",
                headers={"Access-Control-Allow-Origin": "*", "Cache-Control": NO_CACHE},
                reason="tracking_pixel",
            )

        headers = self.build_headers(target, resource_class, kind)
        if body_content_type and body:
            headers["Content-Type"] = body_content_type

        try:
            response = await self._client.request(
                method,
                target.url,
                headers=headers,
                content=body if body else None,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Direct fetch error",
                url=target.url,
                error=str(e) or type(e).__name__,
            )
            stub = self._stub(target, kind, f"upstream_error:{type(e).__name__}")
            if stub is not None:
                return stub
            raise ResourceFetchFailed(
                target.url, f"Upstream request failed: {str(e) or type(e).__name__}"
            ) from e

        content = response.content
        content_type = response.headers.get("content-type") or guess_content_type(target)

        if response.status_code >= 400:
            stub = self._stub(target, kind, f"upstream_status:{response.status_code}")
            if stub is not None:
                return stub
            logger.info(
                "Propagating upstream error status",
                url=target.url,
                status=response.status_code,
            )
            return FetchResult(
                url=target.url,
                status=response.status_code,
                body=content,
                content_type=content_type,
                headers={"Access-Control-Allow-Origin": "*", "Cache-Control": NO_CACHE},
                reason=f"upstream_status:{response.status_code}",
            )

        if kind in _STUBS and looks_like_html(content_type, content):
            stub = self._stub(target, kind, "html_instead_of_asset")
            if stub is not None:
                return stub

        logger.debug(
            "Direct fetch success",
            url=target.url,
            status=response.status_code,
            content_type=content_type,
            content_length=len(content),
        )

        return FetchResult(
            url=target.url,
            status=response.status_code,
            body=content,
            content_type=content_type,
            headers=self._success_headers(resource_class),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()
