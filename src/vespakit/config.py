"""
Configuration for vespakit.

All configuration is validated at construction time, not per-call.
Environment variables are read once via ``VespaConfig.from_env()`` and
the resulting object is immutable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "http://localhost:8080"
_DEFAULT_SEARCH_PATH = "/search/"
_DEFAULT_TIMEOUT_CONNECT = 5.0
_DEFAULT_TIMEOUT_READ = 30.0
_DEFAULT_TIMEOUT_POOL = 10.0
_DEFAULT_RATE_LIMIT = 100
_DEFAULT_RATE_WINDOW = 60.0
_DEFAULT_THROTTLE_LIMIT = 10
_DEFAULT_THROTTLE_TTL = 300.0
_DEFAULT_RETRY_MAX_ATTEMPTS = 3
_DEFAULT_CACHE_TTL = 3600.0
_MAX_QUERY_LENGTH = 10_000


@dataclass(frozen=True)
class VespaConfig:
    """Validated, immutable configuration for a :class:`~vespakit.client.VespaClient`.

    Args:
        base_url: Vespa endpoint used when a call does not name one (no trailing slash).
        api_key: Bearer token sent on authenticated calls. ``None`` sends
            requests unauthenticated.
        timeout_connect: TCP connect timeout in seconds.
        timeout_read: HTTP read timeout in seconds.
        timeout_pool: Connection pool acquisition timeout in seconds.
        verify_ssl: TLS verification (True, False, or path to CA bundle).
        language: Default query language.
        ranking_profile: Ranking profile used when the options do not set one.
        search_path: Path of the search handler appended to the endpoint.
        document_namespace: Namespace segment of ``/document/v1`` paths.
        document_type: Document type segment of ``/document/v1`` paths.
        tenant: Tenant used for application deployment.
        rate_limit: Max search calls per ``rate_window`` (0 = disabled).
        rate_window: Length of the rate-limit window in seconds.
        throttle_limit: Max concurrent search calls (0 = disabled).
        throttle_ttl: Seconds after the last acquire before a throttle counter
            left behind by a crashed process expires.
        retry_max_attempts: Total attempts per logical call (>= 1).
        retry_backoff_base: Backoff unit in seconds; attempt *n* waits
            ``base * 2**n`` before the next one.
        retry_backoff_max: Cap on a single backoff delay (0 = uncapped).
        cache_ttl: Default TTL in seconds for ``cached_search``.
        counter_prefix: Prefix for counter and cache keys in the store.
        store_url: ``memory://`` or a ``redis://`` URL for counters and cache.
        max_query_length: Maximum allowed query string length.
        log_channel: Logger name for general output.
        audit_log_channel: Logger name for audit records.
        error_log_channel: Logger name for classified backend errors.
    """

    base_url: str = _DEFAULT_BASE_URL
    api_key: str | None = field(default=None, repr=False)
    timeout_connect: float = _DEFAULT_TIMEOUT_CONNECT
    timeout_read: float = _DEFAULT_TIMEOUT_READ
    timeout_pool: float = _DEFAULT_TIMEOUT_POOL
    verify_ssl: bool | str = True
    language: str = "en"
    ranking_profile: str = "default"
    search_path: str = _DEFAULT_SEARCH_PATH
    document_namespace: str = "myapp"
    document_type: str = "myapp"
    tenant: str = "default"
    rate_limit: int = _DEFAULT_RATE_LIMIT
    rate_window: float = _DEFAULT_RATE_WINDOW
    throttle_limit: int = _DEFAULT_THROTTLE_LIMIT
    throttle_ttl: float = _DEFAULT_THROTTLE_TTL
    retry_max_attempts: int = _DEFAULT_RETRY_MAX_ATTEMPTS
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 0.0
    cache_ttl: float = _DEFAULT_CACHE_TTL
    counter_prefix: str = "vespakit"
    store_url: str = "memory://"
    max_query_length: int = _MAX_QUERY_LENGTH
    log_channel: str = "vespakit"
    audit_log_channel: str = "vespakit.audit"
    error_log_channel: str = "vespakit.errors"

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.base_url:
            errors.append("base_url must be a non-empty string")
        if not self.search_path:
            errors.append("search_path must be a non-empty string")
        if not self.language:
            errors.append("language must be a non-empty string")
        if self.timeout_connect <= 0:
            errors.append(f"timeout_connect must be > 0, got {self.timeout_connect}")
        if self.timeout_read <= 0:
            errors.append(f"timeout_read must be > 0, got {self.timeout_read}")
        if self.timeout_pool <= 0:
            errors.append(f"timeout_pool must be > 0, got {self.timeout_pool}")
        if self.rate_limit < 0:
            errors.append(f"rate_limit must be >= 0, got {self.rate_limit}")
        if self.rate_window <= 0:
            errors.append(f"rate_window must be > 0, got {self.rate_window}")
        if self.throttle_limit < 0:
            errors.append(f"throttle_limit must be >= 0, got {self.throttle_limit}")
        if self.throttle_ttl <= 0:
            errors.append(f"throttle_ttl must be > 0, got {self.throttle_ttl}")
        if self.retry_max_attempts < 1:
            errors.append(f"retry_max_attempts must be >= 1, got {self.retry_max_attempts}")
        if self.retry_backoff_base < 0:
            errors.append(f"retry_backoff_base must be >= 0, got {self.retry_backoff_base}")
        if self.retry_backoff_max < 0:
            errors.append(f"retry_backoff_max must be >= 0, got {self.retry_backoff_max}")
        if self.cache_ttl < 0:
            errors.append(f"cache_ttl must be >= 0, got {self.cache_ttl}")
        if not self.counter_prefix:
            errors.append("counter_prefix must be a non-empty string")
        if self.max_query_length < 1:
            errors.append(f"max_query_length must be >= 1, got {self.max_query_length}")

        if errors:
            raise ValueError("Invalid Vespa configuration: " + "; ".join(errors))

    @property
    def rate_limit_key(self) -> str:
        return f"{self.counter_prefix}:rate"

    @property
    def throttle_key(self) -> str:
        return f"{self.counter_prefix}:throttle"

    @classmethod
    def from_env(cls, **overrides: object) -> VespaConfig:
        """Build config from environment variables with optional overrides.

        Environment variables:
            VESPA_URL                -- Vespa endpoint (default http://localhost:8080)
            VESPA_API_KEY            -- Bearer token (default unset)
            VESPA_HTTP_TIMEOUT       -- Read timeout seconds (default 30)
            VESPA_TIMEOUT_CONNECT    -- Connect timeout seconds (default 5.0)
            VESPA_VERIFY_SSL         -- "true", "false", or path to CA bundle
            VESPA_DEFAULT_LANGUAGE   -- Default query language (default en)
            VESPA_RANKING_PROFILE    -- Default ranking profile (default "default")
            VESPA_RATE_LIMIT         -- Max requests per window (default 100, 0 = off)
            VESPA_RATE_WINDOW        -- Window length seconds (default 60)
            VESPA_THROTTLE_LIMIT     -- Max concurrent requests (default 10, 0 = off)
            VESPA_THROTTLE_TTL       -- Throttle counter expiry seconds (default 300)
            VESPA_RETRY_MAX_ATTEMPTS -- Attempts per call (default 3)
            VESPA_RETRY_BACKOFF_BASE -- Backoff unit seconds (default 1.0)
            VESPA_CACHE_TTL          -- cached_search TTL seconds (default 3600)
            VESPA_STORE_URL          -- memory:// or redis://host:port/db
            VESPA_LOG_CHANNEL        -- General logger name (default vespakit)
            VESPA_AUDIT_LOG_CHANNEL  -- Audit logger name (default vespakit.audit)
            VESPA_ERROR_LOG_CHANNEL  -- Error logger name (default vespakit.errors)

        Explicit keyword arguments override environment variables.
        """

        def _env(key: str, default: str) -> str:
            return os.environ.get(key, default)

        def _env_float(key: str, default: float) -> float:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ValueError(f"Environment variable {key}={raw!r} is not a valid number")

        def _env_int(key: str, default: int) -> int:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"Environment variable {key}={raw!r} is not a valid integer")

        def _env_verify(key: str, default: bool | str) -> bool | str:
            raw = os.environ.get(key)
            if raw is None:
                return default
            low = raw.strip().lower()
            if low in ("true", "1", "yes"):
                return True
            if low in ("false", "0", "no"):
                return False
            return raw  # treat as CA bundle path

        kwargs: dict[str, object] = {
            "base_url": _env("VESPA_URL", _DEFAULT_BASE_URL).rstrip("/"),
            "api_key": os.environ.get("VESPA_API_KEY") or None,
            "timeout_connect": _env_float("VESPA_TIMEOUT_CONNECT", _DEFAULT_TIMEOUT_CONNECT),
            "timeout_read": _env_float("VESPA_HTTP_TIMEOUT", _DEFAULT_TIMEOUT_READ),
            "timeout_pool": _env_float("VESPA_TIMEOUT_POOL", _DEFAULT_TIMEOUT_POOL),
            "verify_ssl": _env_verify("VESPA_VERIFY_SSL", True),
            "language": _env("VESPA_DEFAULT_LANGUAGE", "en"),
            "ranking_profile": _env("VESPA_RANKING_PROFILE", "default"),
            "search_path": _env("VESPA_SEARCH_PATH", _DEFAULT_SEARCH_PATH),
            "document_namespace": _env("VESPA_DOCUMENT_NAMESPACE", "myapp"),
            "document_type": _env("VESPA_DOCUMENT_TYPE", "myapp"),
            "tenant": _env("VESPA_TENANT", "default"),
            "rate_limit": _env_int("VESPA_RATE_LIMIT", _DEFAULT_RATE_LIMIT),
            "rate_window": _env_float("VESPA_RATE_WINDOW", _DEFAULT_RATE_WINDOW),
            "throttle_limit": _env_int("VESPA_THROTTLE_LIMIT", _DEFAULT_THROTTLE_LIMIT),
            "throttle_ttl": _env_float("VESPA_THROTTLE_TTL", _DEFAULT_THROTTLE_TTL),
            "retry_max_attempts": _env_int("VESPA_RETRY_MAX_ATTEMPTS", _DEFAULT_RETRY_MAX_ATTEMPTS),
            "retry_backoff_base": _env_float("VESPA_RETRY_BACKOFF_BASE", 1.0),
            "retry_backoff_max": _env_float("VESPA_RETRY_BACKOFF_MAX", 0.0),
            "cache_ttl": _env_float("VESPA_CACHE_TTL", _DEFAULT_CACHE_TTL),
            "counter_prefix": _env("VESPA_COUNTER_PREFIX", "vespakit"),
            "store_url": _env("VESPA_STORE_URL", "memory://"),
            "max_query_length": _env_int("VESPA_MAX_QUERY_LENGTH", _MAX_QUERY_LENGTH),
            "log_channel": _env("VESPA_LOG_CHANNEL", "vespakit"),
            "audit_log_channel": _env("VESPA_AUDIT_LOG_CHANNEL", "vespakit.audit"),
            "error_log_channel": _env("VESPA_ERROR_LOG_CHANNEL", "vespakit.errors"),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        config = cls(**kwargs)  # type: ignore[arg-type]
        logger.info(
            "Vespa config: base_url=%s language=%s rate_limit=%d throttle_limit=%d"
            " retry_max_attempts=%d store=%s auth=%s",
            config.base_url,
            config.language,
            config.rate_limit,
            config.throttle_limit,
            config.retry_max_attempts,
            config.store_url.split("://", 1)[0],
            "yes" if config.api_key else "no",
        )
        return config
