"""
Data models and exception hierarchy for vespakit.

All public types used by the library are defined here. Result models are
frozen dataclasses so they can be shared across threads and tasks.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class VespaError(Exception):
    """Base exception for all vespakit errors."""


class AdmissionError(VespaError):
    """A call was rejected by admission control before reaching the network."""


class RateLimitExceeded(AdmissionError):
    """More calls were made in the current window than the rate limit allows."""

    def __init__(self, limit: int, window: float) -> None:
        self.limit = limit
        self.window = window
        super().__init__(
            f"Rate limit exceeded: more than {limit} requests in {window:g}s. "
            "Please try again later."
        )


class ThrottleExceeded(AdmissionError):
    """Too many calls are in flight at once."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"Too many concurrent requests (limit {limit}). Please try again later."
        )


class RequestFailed(VespaError):
    """Vespa answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        detail: str = "",
        *,
        method: str = "",
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.method = method
        self.url = url
        target = f" {method} {url}" if method or url else ""
        super().__init__(f"HTTP {status_code}{target}: {detail}")


class AuthenticationRejected(RequestFailed):
    """HTTP 401: the API key is missing or wrong."""


class ResourceNotFound(RequestFailed):
    """HTTP 404: the requested resource does not exist."""


class BackendServerError(RequestFailed):
    """HTTP 5xx: Vespa failed while handling the request."""


class UnknownBackendError(RequestFailed):
    """Any other non-2xx status."""


class VespaConnectionError(VespaError):
    """Vespa is unreachable or a transport-level error occurred (DNS, TCP, TLS, timeout)."""


class VespaResponseError(VespaError):
    """Vespa returned a body that could not be decoded or had an unexpected shape."""

    def __init__(self, message: str, raw_body: str = "") -> None:
        self.raw_body = raw_body[:2000]
        super().__init__(message)


class RetriesExhausted(VespaError):
    """Every attempt of one logical call failed."""

    def __init__(self, method: str, url: str, attempts: int, last_error: Exception) -> None:
        self.method = method
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All retries failed for {method} {url} after {attempts} attempt(s): {last_error}"
        )


class AllNodesDown(VespaError):
    """Failover tried every candidate endpoint and all of them failed."""

    def __init__(self, nodes: list[str], errors: list[tuple[str, Exception]]) -> None:
        self.nodes = list(nodes)
        self.errors = list(errors)
        summary = "; ".join(f"{node}: {exc}" for node, exc in self.errors)
        super().__init__(f"All Vespa nodes are down ({len(self.nodes)} tried). {summary}")


class VespaCancelledError(VespaError):
    """The caller cancelled the operation before it completed."""


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


class NodeHealth(str, Enum):
    """Status of one node as reported by :meth:`VespaClient.health_check`."""

    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"
    UNREACHABLE = "Unreachable"


@dataclass(frozen=True)
class SearchHit:
    """A single hit from ``root.children`` of a Vespa search response."""

    id: str
    relevance: float = 0.0
    source: str = ""
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchResult:
    """Normalized view over a raw Vespa search response body."""

    total_count: int
    hits: list[SearchHit]
    coverage: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict (e.g. for JSON output)."""
        return asdict(self)

    @classmethod
    def from_response(cls, data: Any) -> SearchResult:
        """Parse a decoded Vespa search body.

        Raises VespaResponseError when ``root`` is missing or not an object.
        Unexpected shapes below ``root`` are tolerated and skipped.
        """
        root = data.get("root") if isinstance(data, dict) else None
        if not isinstance(root, dict):
            raise VespaResponseError(
                f"Expected 'root' dict in Vespa JSON, got {type(root).__name__}",
                raw_body=str(data)[:2000],
            )

        root_fields = root.get("fields", {})
        if not isinstance(root_fields, dict):
            root_fields = {}
        total_count = root_fields.get("totalCount", 0)
        if not isinstance(total_count, int):
            total_count = 0

        children = root.get("children", [])
        if not isinstance(children, list):
            children = []

        hits: list[SearchHit] = []
        for child in children:
            if not isinstance(child, dict):
                continue
            hit_fields = child.get("fields", {})
            hits.append(
                SearchHit(
                    id=str(child.get("id", "")),
                    relevance=float(child.get("relevance", 0.0) or 0.0),
                    source=str(child.get("source", "")),
                    fields=hit_fields if isinstance(hit_fields, dict) else {},
                )
            )

        coverage = root.get("coverage", {})
        errors = root.get("errors", [])
        return cls(
            total_count=total_count,
            hits=hits,
            coverage=coverage if isinstance(coverage, dict) else {},
            errors=[e for e in errors if isinstance(e, dict)] if isinstance(errors, list) else [],
        )


@dataclass(frozen=True)
class BatchResult:
    """Per-document outcome of :meth:`VespaClient.batch_insert_documents`."""

    succeeded: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, VespaError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
