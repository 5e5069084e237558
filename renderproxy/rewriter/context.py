"""Per-document rewrite context and proxy URL construction."""

from dataclasses import dataclass
from urllib.parse import parse_qs, quote, urljoin, urlsplit

PROXY_PATH = "/proxy"

# References that must never be wrapped
PASSTHROUGH_SCHEMES = ("data:", "blob:", "javascript:", "about:", "mailto:", "tel:")


@dataclass(frozen=True)
class RewriteContext:
    """
    Everything needed to rewrite one rendered document.

    Attributes:
        proxy_origin: scheme://host[:port] the proxy is reachable at.
        document_url: Absolute URL of the document being rewritten;
            relative references resolve against it.
    """

    proxy_origin: str
    document_url: str

    @property
    def proxy_base(self) -> str:
        """Prefix of every rewritten URL: ``<origin>/proxy?url=``."""
        return f"{self.proxy_origin.rstrip('/')}{PROXY_PATH}?url="

    def is_proxied(self, url: str) -> bool:
        return url.startswith(self.proxy_base)

    def make_proxy_url(self, reference: str, base_url: str | None = None) -> str | None:
        """Proxy form of a reference, or None when it must stay untouched.

        Data/blob/script-scheme URLs and fragments are left alone, as are
        references that are already proxy URLs.

        Args:
            reference: Attribute value or runtime URL.
            base_url: Resolution base; defaults to the document URL.

        Returns:
            Proxy URL, the reference itself when already proxied, or None.
        """
        value = reference.strip()
        if not value or value.startswith("#"):
            return None
        if value.lower().startswith(PASSTHROUGH_SCHEMES):
            return None
        if self.is_proxied(value):
            return value

        absolute = urljoin(base_url or self.document_url, value)
        if self.is_proxied(absolute):
            return absolute
        if urlsplit(absolute).scheme not in ("http", "https"):
            return None

        return self.proxy_base + quote(absolute, safe="")


def unwrap_proxy_url(proxy_url: str) -> str | None:
    """Decode the target URL carried by a proxy URL."""
    values = parse_qs(urlsplit(proxy_url).query).get("url")
    return values[0] if values else None
