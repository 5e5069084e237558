"""Fetch result data class shared by the direct fetcher and the renderer."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FetchResult:
    """
    Result of serving one proxied URL.

    Attributes:
        url: Resolved absolute target URL.
        status: HTTP status to return to the client.
        body: Response payload.
        content_type: Content-Type to return (always set).
        headers: Extra response headers (CORS, caching, X-Proxied-URL).
        method: Which path produced the result ("direct" or "render").
        stubbed: True when the body is a substitute for a failed or
            mistyped upstream payload.
        reason: Why a stub or an empty response was produced.
    """

    url: str
    status: int
    body: bytes
    content_type: str
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "direct"
    stubbed: bool = False
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without the body)."""
        return {
            "url": self.url,
            "status": self.status,
            "content_type": self.content_type,
            "content_length": len(self.body),
            "method": self.method,
            "stubbed": self.stubbed,
            "reason": self.reason,
        }
