"""URL parsing and canonicalization for proxied targets."""

import re
from dataclasses import dataclass
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from renderproxy.proxy.errors import InvalidURL

ALLOWED_SCHEMES = ("http", "https")

_REPEATED_SLASHES = re.compile(r"/{2,}")


@dataclass(frozen=True)
class TargetURL:
    """
    An absolute target URL and its parsed components.

    Attributes:
        url: Canonical absolute URL string.
        scheme: Lowercase scheme (http/https).
        host: Lowercase network location (host[:port]).
        path: Path component, always starting with "/".
        query: Query string without the leading "?".
    """

    url: str
    scheme: str
    host: str
    path: str
    query: str = ""

    @property
    def origin(self) -> str:
        """scheme://host[:port] of the target."""
        return f"{self.scheme}://{self.host}"

    @property
    def hostname(self) -> str:
        """Host without port or credentials."""
        return urlsplit(self.url).hostname or ""

    def resolve(self, reference: str) -> str:
        """Resolve a (possibly relative) reference against this URL."""
        return urljoin(self.url, reference)

    def __str__(self) -> str:
        return self.url


def _collapse_slashes(path: str) -> str:
    if not path:
        return "/"
    return _REPEATED_SLASHES.sub("/", path)


def normalize_url(raw_url: str) -> TargetURL:
    """Parse and canonicalize a raw target URL.

    The result is always absolute: scheme and host are lowercased, repeated
    path separators are collapsed (the "//" after the scheme is untouched)
    and an empty path becomes "/".

    Args:
        raw_url: Raw value of the ``url`` query parameter.

    Returns:
        TargetURL instance.

    Raises:
        InvalidURL: If the value is not an absolute http(s) URL.
    """
    candidate = (raw_url or "").strip()
    if not candidate:
        raise InvalidURL(raw_url, "URL is empty")

    try:
        parts = urlsplit(candidate)
        # Accessing .port validates the port range
        parts.port  # noqa: B018
    except ValueError as e:
        raise InvalidURL(raw_url, f"URL could not be parsed: {e}") from e

    scheme = parts.scheme.lower()
    if not scheme:
        raise InvalidURL(raw_url, "URL has no scheme")
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidURL(raw_url, f"Unsupported URL scheme: {scheme}")
    if not parts.hostname:
        raise InvalidURL(raw_url, "URL has no host")

    # Credentials keep their case, the host part does not
    userinfo, _, hostport = parts.netloc.rpartition("@")
    hostport = hostport.lower()
    netloc = f"{userinfo}@{hostport}" if userinfo else hostport

    path = _collapse_slashes(parts.path)
    canonical = SplitResult(scheme, netloc, path, parts.query, parts.fragment)

    return TargetURL(
        url=urlunsplit(canonical),
        scheme=scheme,
        host=hostport,
        path=path,
        query=parts.query,
    )
