"""
In-browser request filter.

The rendering engine asks the interceptor about every outbound sub-request a
page makes while it loads. Only a short denylist of ad/analytics hosts is
aborted; everything else, fonts and third-party hosts included, is allowed
because aggressive blocking breaks legitimate rendering.
"""

from enum import Enum
from urllib.parse import urlsplit

from renderproxy.crawler.resource_classifier import compile_host_patterns
from renderproxy.utils.config import InterceptorConfig, get_settings


class InterceptDecision(str, Enum):
    """Outcome for one outbound request."""

    ALLOW = "allow"
    DENY = "deny"


class RequestInterceptor:
    """Synchronous allow/deny predicate over outbound request URLs."""

    def __init__(self, config: InterceptorConfig | None = None):
        config = config or get_settings().interceptor
        self._blocked = compile_host_patterns(config.blocked_hosts)

    def __call__(self, url: str, resource_type: str | None = None) -> InterceptDecision:
        try:
            parts = urlsplit(url)
        except ValueError:
            return InterceptDecision.ALLOW

        hostname = parts.hostname
        if not hostname:
            # data:, blob:, about: and friends never leave the engine
            return InterceptDecision.ALLOW

        path = parts.path or "/"
        if any(p.matches(hostname, path) for p in self._blocked):
            return InterceptDecision.DENY
        return InterceptDecision.ALLOW
