"""
URL classification for request routing.

Decides, from the URL alone, whether a target is a navigable document that
needs the rendering engine, a static sub-resource, or a probable API call.
Both of the latter are served by the direct fetcher.

Rules (first match wins):
1. Path ends in a known static-asset extension -> SUBRESOURCE
2. Path matches an extension-less resource pattern, or the host is a known
   ad/analytics host -> SUBRESOURCE
3. Path has no extension and matches an API pattern -> API_CALL
4. Otherwise -> DOCUMENT

Classification is pure and recomputed per request: the same URL may show up
in different contexts, so results are never cached.
"""

import posixpath
from enum import Enum
from functools import lru_cache
from urllib.parse import urlsplit

from renderproxy.crawler.url_normalizer import TargetURL
from renderproxy.utils.config import ClassifierConfig, get_settings


class ResourceClass(str, Enum):
    """Routing class of a target URL."""

    DOCUMENT = "document"
    SUBRESOURCE = "subresource"
    API_CALL = "api_call"


class AssetKind(str, Enum):
    """Expected payload type of a sub-resource, from its extension."""

    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    IMAGE = "image"
    FONT = "font"
    MEDIA = "media"
    DATA = "data"
    UNKNOWN = "unknown"


class HostPattern:
    """A ``host[/path-prefix]`` pattern.

    The host part matches the host itself and any subdomain of it, so
    ``doubleclick.net`` covers ``stats.g.doubleclick.net``.
    """

    def __init__(self, pattern: str):
        host, sep, path = pattern.strip().lower().partition("/")
        self.host = host.lstrip(".")
        self.path_prefix = f"/{path}" if sep else ""

    def matches(self, hostname: str, path: str = "/") -> bool:
        hostname = hostname.lower()
        if hostname != self.host and not hostname.endswith("." + self.host):
            return False
        if self.path_prefix:
            return path.lower().startswith(self.path_prefix)
        return True

    def __repr__(self) -> str:
        return f"HostPattern({self.host}{self.path_prefix})"


def compile_host_patterns(patterns: list[str]) -> list[HostPattern]:
    """Compile raw pattern strings, skipping blanks."""
    return [HostPattern(p) for p in patterns if p and p.strip()]


def _split(url: TargetURL | str) -> tuple[str, str]:
    """Return (hostname, path) without ever raising."""
    if isinstance(url, TargetURL):
        return url.hostname, url.path
    try:
        parts = urlsplit(url)
        return parts.hostname or "", parts.path or "/"
    except ValueError:
        return "", "/"


def path_extension(path: str) -> str:
    """Lowercase extension of the last path segment ("" when absent)."""
    segment = path.rsplit("/", 1)[-1]
    segment = segment.split(";", 1)[0]
    return posixpath.splitext(segment)[1].lower()


class ResourceClassifier:
    """Classifies URLs using configurable extension and pattern data."""

    def __init__(self, config: ClassifierConfig | None = None):
        self._config = config or get_settings().classifier
        cfg = self._config

        self._kind_by_extension: dict[str, AssetKind] = {}
        for kind, extensions in (
            (AssetKind.SCRIPT, cfg.script_extensions),
            (AssetKind.STYLESHEET, cfg.stylesheet_extensions),
            (AssetKind.IMAGE, cfg.image_extensions),
            (AssetKind.FONT, cfg.font_extensions),
            (AssetKind.MEDIA, cfg.media_extensions),
            (AssetKind.DATA, cfg.data_extensions),
        ):
            for ext in extensions:
                ext = ext.lower()
                self._kind_by_extension[ext if ext.startswith(".") else f".{ext}"] = kind

        self._resource_patterns = [p.lower() for p in cfg.resource_path_patterns]
        self._api_patterns = [p.lower() for p in cfg.api_path_patterns]
        self._tracking_hosts = compile_host_patterns(cfg.tracking_hosts)
        self._tracking_pixels = compile_host_patterns(cfg.tracking_pixel_patterns)

    def asset_kind(self, url: TargetURL | str) -> AssetKind:
        """Expected payload type, derived from the path extension."""
        _, path = _split(url)
        return self._kind_by_extension.get(path_extension(path), AssetKind.UNKNOWN)

    def is_tracking_host(self, url: TargetURL | str) -> bool:
        """Whether the URL points at a known ad/analytics host or beacon."""
        hostname, path = _split(url)
        if not hostname:
            return False
        return any(p.matches(hostname, path) for p in self._tracking_hosts) or any(
            p.matches(hostname, path) for p in self._tracking_pixels
        )

    def is_tracking_pixel(self, url: TargetURL | str) -> bool:
        """Whether a request is a tracking beacon that should get 204.

        Scripts and stylesheets from tracking hosts are not beacons; they are
        fetched normally so pages that depend on them keep working.
        """
        if not self.is_tracking_host(url):
            return False
        return self.asset_kind(url) in (AssetKind.IMAGE, AssetKind.UNKNOWN)

    def classify(self, url: TargetURL | str) -> ResourceClass:
        """Classify a URL. Total and side-effect free."""
        _, path = _split(url)
        lowered = path.lower()
        extension = path_extension(lowered)

        if extension in self._kind_by_extension:
            return ResourceClass.SUBRESOURCE

        if any(p in lowered for p in self._resource_patterns) or self.is_tracking_host(url):
            return ResourceClass.SUBRESOURCE

        if not extension:
            probe = lowered if lowered.endswith("/") else lowered + "/"
            if any(p in probe for p in self._api_patterns):
                return ResourceClass.API_CALL

        return ResourceClass.DOCUMENT


@lru_cache(maxsize=1)
def get_resource_classifier() -> ResourceClassifier:
    """Get the process-wide classifier built from settings."""
    return ResourceClassifier()


def classify(url: TargetURL | str) -> ResourceClass:
    """Classify a URL with the configured classifier."""
    return get_resource_classifier().classify(url)
