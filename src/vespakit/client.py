"""
Vespa client with admission control, retries, caching and failover.

Provides ``VespaClient`` for use in servers and pipelines (connection pooling,
validated config, shared counters, context manager support) and module-level
convenience functions ``search()`` / ``asearch()`` for one-shot use.

Usage:
    # One-shot (creates and closes a client per call):
    from vespakit import search
    body = search("install guide")

    # Persistent client (recommended for servers and pipelines):
    from vespakit import VespaClient
    with VespaClient() as client:
        body = client.search("install guide")
        page = client.search_with_pagination("install guide", page=2, per_page=20)
        body = client.search_with_failover("install guide", ["http://a:8080", "http://b:8080"])

Endpoint and language overrides are per-call arguments; the client keeps no
per-call state, so one instance may be shared across threads and tasks.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from contextlib import nullcontext
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from vespakit.admission import AdmissionController
from vespakit.cache import SearchCache
from vespakit.config import VespaConfig
from vespakit.failover import arun_with_failover, run_with_failover
from vespakit.logging import audit_log
from vespakit.models import (
    BatchResult,
    NodeHealth,
    VespaCancelledError,
    VespaError,
    VespaResponseError,
)
from vespakit.plugins import PluginPipeline, QueryPlugin
from vespakit.query import QueryBuilder
from vespakit.stores import create_store
from vespakit.transport import RetryingTransport, decode_body

logger = logging.getLogger(__name__)

_otel_tracer: Any = None
try:
    from opentelemetry import trace

    _otel_tracer = trace.get_tracer("vespakit")
except ImportError:
    pass


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _elapsed_ms(t0: float) -> float:
    return (time.monotonic() - t0) * 1000


def _otel_span(name: str, query: str, endpoint: str, language: str) -> Any:
    """Return an OTel span context manager, or nullcontext if OTel is absent."""
    if _otel_tracer is not None:
        return _otel_tracer.start_as_current_span(
            name,
            attributes={
                "vespa.query": query,
                "vespa.endpoint": endpoint,
                "vespa.language": language,
            },
        )
    return nullcontext()


def _validate_query(query: str, max_length: int) -> str:
    """Validate and normalize query input. Returns stripped query."""
    query = (query or "").strip()
    if not query:
        raise ValueError("query must be a non-empty string")
    if len(query) > max_length:
        raise ValueError(f"query length {len(query)} exceeds maximum {max_length}")
    return query


def _total_count(data: Any) -> int:
    try:
        return int(data["root"]["fields"]["totalCount"])
    except (KeyError, TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# VespaClient
# ---------------------------------------------------------------------------


class VespaClient:
    """Persistent Vespa client.

    Holds a pooled :class:`~vespakit.transport.RetryingTransport`, the plugin
    pipeline, and the counter/cache store shared with every other client
    pointing at the same store.

    Args:
        config: Validated configuration. Defaults to ``VespaConfig.from_env()``.
        store: Counter and cache store. Defaults to ``create_store(config.store_url)``,
            which is then closed along with the client.
        transport: Pre-built transport (tests inject one with fake sleeps).
    """

    def __init__(
        self,
        config: VespaConfig | None = None,
        *,
        store: Any | None = None,
        transport: RetryingTransport | None = None,
        _sync_transport: httpx.BaseTransport | None = None,
        _async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or VespaConfig.from_env()
        self._store = store if store is not None else create_store(self._config.store_url)
        self._owns_store = store is None
        self._transport = transport or RetryingTransport(
            self._config,
            _sync_transport=_sync_transport,
            _async_transport=_async_transport,
        )
        self._admission = AdmissionController.from_config(self._config, self._store)
        self._plugins = PluginPipeline()
        self._cache = SearchCache(self._store, prefix=f"{self._config.counter_prefix}:search:")
        self._channel = logging.getLogger(self._config.log_channel)
        self._closed = False

        logger.debug(
            "VespaClient created base_url=%s language=%s rate_limit=%d throttle_limit=%d",
            self._config.base_url,
            self._config.language,
            self._config.rate_limit,
            self._config.throttle_limit,
        )

    @property
    def config(self) -> VespaConfig:
        return self._config

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    @property
    def plugins(self) -> PluginPipeline:
        return self._plugins

    def register_plugin(self, plugin: QueryPlugin, priority: int = 0) -> None:
        """Add a query plugin. Lower priorities run first."""
        self._plugins.register(plugin, priority)

    # -- search --------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("VespaClient is closed")

    def _search_body(
        self, query: str, options: Mapping[str, Any], language: str, raw_yql: bool
    ) -> dict[str, Any]:
        yql = query if raw_yql else f"select * from sources * where userInput('{query}');"
        body: dict[str, Any] = {
            "yql": yql,
            "ranking.profile": options.get("ranking.profile", self._config.ranking_profile),
            "language": language,
        }
        body.update(options)
        return body

    def _search_url(self, endpoint: str | None) -> tuple[str, str]:
        target = (endpoint or self._config.base_url).rstrip("/")
        return target, f"{target}{self._config.search_path}"

    def _record_search(
        self, query: str, endpoint: str, language: str, t0: float, data: Any
    ) -> None:
        elapsed = _elapsed_ms(t0)
        total = _total_count(data)
        self._channel.info(
            "Vespa search executed in %.1fms query=%r total_count=%d",
            elapsed,
            query,
            total,
            extra={"endpoint": endpoint, "language": language},
        )
        audit_log(
            self._config.audit_log_channel,
            "search",
            query=query,
            endpoint=endpoint,
            language=language,
            execution_time_ms=round(elapsed, 1),
            total_count=total,
        )

    def _search(
        self,
        query: str,
        options: Mapping[str, Any] | None,
        *,
        endpoint: str | None,
        language: str | None,
        cancel: threading.Event | None,
        raw_yql: bool = False,
    ) -> dict[str, Any]:
        self._ensure_open()
        query = _validate_query(query, self._config.max_query_length)
        opts = dict(options or {})
        lang = language or self._config.language
        target, url = self._search_url(endpoint)

        with _otel_span("vespa.search", query, target, lang):
            with self._admission.admit():
                effective = self._plugins.execute(query)
                body = self._search_body(effective, opts, lang, raw_yql)
                t0 = time.monotonic()
                response = self._transport.send("post", url, body, cancel=cancel)
                data = decode_body(response)
            self._record_search(effective, target, lang, t0, data)
        return data

    async def _asearch(
        self,
        query: str,
        options: Mapping[str, Any] | None,
        *,
        endpoint: str | None,
        language: str | None,
        raw_yql: bool = False,
    ) -> dict[str, Any]:
        self._ensure_open()
        query = _validate_query(query, self._config.max_query_length)
        opts = dict(options or {})
        lang = language or self._config.language
        target, url = self._search_url(endpoint)

        with _otel_span("vespa.asearch", query, target, lang):
            async with self._admission.aadmit():
                effective = self._plugins.execute(query)
                body = self._search_body(effective, opts, lang, raw_yql)
                t0 = time.monotonic()
                response = await self._transport.asend("post", url, body)
                data = decode_body(response)
            self._record_search(effective, target, lang, t0, data)
        return data

    def search(
        self,
        query: str,
        options: Mapping[str, Any] | None = None,
        *,
        endpoint: str | None = None,
        language: str | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Run one search and return the decoded response body.

        The query passes admission control, then the plugin pipeline, and is
        wrapped as ``userInput('<query>')`` in the YQL expression. Entries in
        *options* are merged into the request body and win on collisions.

        Args:
            query: Search text (must be non-empty).
            options: Extra request parameters (``hits``, ``offset``,
                ``ranking.profile``, ...).
            endpoint: Target this endpoint instead of ``config.base_url``.
            language: Query language for this call instead of ``config.language``.
            cancel: Set this event from another thread to abort the call.

        Raises:
            ValueError: Empty or over-long query.
            RateLimitExceeded, ThrottleExceeded: Rejected by admission control.
            RetriesExhausted: Every attempt failed.
            VespaResponseError: The body was not JSON.
            VespaCancelledError: *cancel* was set.
        """
        return self._search(query, options, endpoint=endpoint, language=language, cancel=cancel)

    async def asearch(
        self,
        query: str,
        options: Mapping[str, Any] | None = None,
        *,
        endpoint: str | None = None,
        language: str | None = None,
    ) -> dict[str, Any]:
        """Async variant of search(). Uses the persistent async client."""
        return await self._asearch(query, options, endpoint=endpoint, language=language)

    def search_with_builder(
        self,
        builder: QueryBuilder,
        options: Mapping[str, Any] | None = None,
        *,
        endpoint: str | None = None,
        language: str | None = None,
    ) -> dict[str, Any]:
        """Search with a rendered :class:`~vespakit.query.QueryBuilder` as the YQL expression."""
        return self._search(
            builder.get_query(),
            options,
            endpoint=endpoint,
            language=language,
            cancel=None,
            raw_yql=True,
        )

    def cached_search(
        self,
        query: str,
        options: Mapping[str, Any] | None = None,
        ttl: float | None = None,
    ) -> dict[str, Any]:
        """search() memoized in the store for *ttl* seconds (default ``config.cache_ttl``)."""
        effective_ttl = self._config.cache_ttl if ttl is None else ttl
        return self._cache.get_or_compute(
            query, options, effective_ttl, lambda: self.search(query, options)
        )

    async def acached_search(
        self,
        query: str,
        options: Mapping[str, Any] | None = None,
        ttl: float | None = None,
    ) -> dict[str, Any]:
        """Async variant of cached_search()."""
        effective_ttl = self._config.cache_ttl if ttl is None else ttl
        return await self._cache.aget_or_compute(
            query, options, effective_ttl, lambda: self.asearch(query, options)
        )

    def invalidate_cache(self, query: str, options: Mapping[str, Any] | None = None) -> None:
        """Drop the cached body for ``(query, options)``, if any."""
        self._cache.invalidate(query, options)

    def search_with_pagination(
        self,
        query: str,
        page: int = 1,
        per_page: int = 10,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Fetch one page: ``offset = (page - 1) * per_page`` and ``hits = per_page``."""
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if per_page < 1:
            raise ValueError(f"per_page must be >= 1, got {per_page}")
        opts = dict(options or {})
        opts["offset"] = (page - 1) * per_page
        opts["hits"] = per_page
        return self.search(query, opts)

    def search_with_custom_ranking(
        self,
        query: str,
        ranking_expression: str,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        opts = dict(options or {})
        opts["ranking.expression"] = ranking_expression
        return self.search(query, opts)

    def search_with_ml_model(
        self,
        query: str,
        model_endpoint: str,
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Ask an external scoring service for extra search parameters, then search.

        The service receives ``{"query": query}`` unauthenticated and may
        answer with a JSON object whose entries override *options*. Any other
        outcome is logged and the search runs with *options* unchanged.
        """
        opts = dict(options or {})
        try:
            response = self._transport.request(
                "post", model_endpoint, {"query": query}, authenticate=False
            )
        except httpx.HTTPError as exc:
            logger.warning("ML model endpoint %s failed: %s; searching without it", model_endpoint, exc)
            return self.search(query, opts)

        if response.is_success:
            try:
                ml_params = response.json()
            except ValueError:
                ml_params = None
            if isinstance(ml_params, dict):
                return self.search(query, {**opts, **ml_params})

        logger.warning(
            "ML model endpoint %s returned unusable response (HTTP %d); searching without it",
            model_endpoint,
            response.status_code,
        )
        return self.search(query, opts)

    def search_in_multiple_languages(
        self,
        query: str,
        languages: Iterable[str],
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Run the same search once per language, sequentially."""
        return {lang: self.search(query, options, language=lang) for lang in languages}

    async def asearch_in_multiple_languages(
        self,
        query: str,
        languages: Iterable[str],
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Run the same search once per language, concurrently.

        Each search counts against the throttle, so more languages than
        ``throttle_limit`` fail with ThrottleExceeded.
        """
        langs = list(dict.fromkeys(languages))
        bodies = await asyncio.gather(
            *(self.asearch(query, options, language=lang) for lang in langs)
        )
        return dict(zip(langs, bodies))

    def search_with_failover(
        self,
        query: str,
        nodes: Sequence[str],
        options: Mapping[str, Any] | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Search each node in order until one succeeds.

        Raises:
            AllNodesDown: Every node failed.
        """
        return run_with_failover(
            nodes, lambda node: self.search(query, options, endpoint=node, cancel=cancel)
        )

    async def asearch_with_failover(
        self,
        query: str,
        nodes: Sequence[str],
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Async variant of search_with_failover()."""
        return await arun_with_failover(
            nodes, lambda node: self.asearch(query, options, endpoint=node)
        )

    # -- documents -----------------------------------------------------------

    def _document_url(self, document_id: str) -> str:
        cfg = self._config
        return (
            f"{cfg.base_url.rstrip('/')}/document/v1/{cfg.document_namespace}/{cfg.document_type}"
            f"/docid/{quote(str(document_id), safe='')}"
        )

    def _document_call(
        self,
        method: str,
        document_id: str,
        body: Any = None,
        *,
        cancel: threading.Event | None = None,
    ) -> Any:
        self._ensure_open()
        response = self._transport.send(
            method, self._document_url(document_id), body, cancel=cancel
        )
        return decode_body(response)

    def insert_document(
        self,
        document_id: str,
        document: Mapping[str, Any],
        *,
        cancel: threading.Event | None = None,
    ) -> Any:
        data = self._document_call("put", document_id, dict(document), cancel=cancel)
        logger.info("Inserted document with ID %s", document_id)
        return data

    def update_document(self, document_id: str, fields: Mapping[str, Any]) -> Any:
        data = self._document_call("put", document_id, {"fields": dict(fields)})
        logger.info("Updated document with ID %s", document_id)
        return data

    def partial_update_document(self, document_id: str, fields: Mapping[str, Any]) -> Any:
        data = self._document_call("patch", document_id, {"fields": dict(fields)})
        logger.info("Partially updated document with ID %s", document_id)
        return data

    def delete_document(self, document_id: str) -> Any:
        data = self._document_call("delete", document_id)
        logger.info("Deleted document with ID %s", document_id)
        return data

    def get_document(self, document_id: str) -> Any:
        return self._document_call("get", document_id)

    def batch_insert_documents(
        self,
        documents: Mapping[str, Mapping[str, Any]],
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Insert each document independently; one failure never stops the batch.

        Cancellation is the exception: it aborts the remaining documents.
        """
        succeeded: dict[str, Any] = {}
        failed: dict[str, VespaError] = {}
        for document_id, document in documents.items():
            try:
                succeeded[str(document_id)] = self.insert_document(
                    document_id, document, cancel=cancel
                )
            except VespaCancelledError:
                raise
            except VespaError as exc:
                logger.warning("Batch insert of document %s failed: %s", document_id, exc)
                failed[str(document_id)] = exc

        logger.info(
            "Batch insert completed: %d succeeded, %d failed",
            len(succeeded),
            len(failed),
        )
        audit_log(
            self._config.audit_log_channel,
            "batch_insert",
            succeeded=sorted(succeeded),
            failed=sorted(failed),
        )
        return BatchResult(succeeded=succeeded, failed=failed)

    # -- operations ----------------------------------------------------------

    def health_check(self, nodes: Iterable[str] | None = None) -> dict[str, NodeHealth]:
        """GET ``{node}/ApplicationStatus`` on each node without credentials.

        Node failures never raise: a node that answers non-2xx is UNHEALTHY
        and a node that cannot be reached at all is UNREACHABLE. Calling this
        on a closed client raises RuntimeError like every other operation.
        """
        self._ensure_open()
        statuses: dict[str, NodeHealth] = {}
        for node in nodes if nodes is not None else [self._config.base_url]:
            try:
                response = self._transport.request(
                    "get", f"{node.rstrip('/')}/ApplicationStatus", authenticate=False
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.warning("Node %s unreachable: %s", node, exc)
                statuses[node] = NodeHealth.UNREACHABLE
                continue
            statuses[node] = NodeHealth.HEALTHY if response.is_success else NodeHealth.UNHEALTHY
        return statuses

    async def ahealth_check(self, nodes: Iterable[str] | None = None) -> dict[str, NodeHealth]:
        """Async variant of health_check(); checks all nodes concurrently."""
        self._ensure_open()
        targets = list(nodes) if nodes is not None else [self._config.base_url]

        async def check(node: str) -> NodeHealth:
            try:
                response = await self._transport.arequest(
                    "get", f"{node.rstrip('/')}/ApplicationStatus", authenticate=False
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.warning("Node %s unreachable: %s", node, exc)
                return NodeHealth.UNREACHABLE
            return NodeHealth.HEALTHY if response.is_success else NodeHealth.UNHEALTHY

        results = await asyncio.gather(*(check(node) for node in targets))
        return dict(zip(targets, results))

    def deploy_application(self, package_path: str | Path, *, endpoint: str | None = None) -> Any:
        """Upload an application package zip and activate the resulting session.

        Args:
            package_path: Path to the application package ``.zip``.
            endpoint: Config server URL (defaults to ``config.base_url``).

        Raises:
            FileNotFoundError: The package does not exist.
            VespaResponseError: The upload response carried no ``session-id``.
        """
        self._ensure_open()
        path = Path(package_path)
        if not path.is_file():
            raise FileNotFoundError(f"Application package not found at: {path}")

        base = (endpoint or self._config.base_url).rstrip("/")
        session_url = f"{base}/application/v2/tenant/{self._config.tenant}/session"
        prepared = self._transport.send(
            "post",
            session_url,
            content=path.read_bytes(),
            headers={"Content-Type": "application/zip"},
        )
        data = decode_body(prepared)
        session_id = data.get("session-id") if isinstance(data, dict) else None
        if not session_id:
            raise VespaResponseError(
                "Failed to obtain session ID during application preparation",
                raw_body=prepared.text,
            )

        activated = self._transport.send("put", f"{session_url}/{session_id}/active")
        logger.info("Application successfully deployed with session ID %s", session_id)
        audit_log(self._config.audit_log_channel, "deploy", session_id=session_id, package=str(path))
        return decode_body(activated)

    # -- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Close the underlying HTTP clients, and the store if this client built it."""
        if not self._closed:
            self._transport.close()
            if self._owns_store and hasattr(self._store, "close"):
                self._store.close()
            self._closed = True
            logger.debug("VespaClient closed base_url=%s", self._config.base_url)

    async def aclose(self) -> None:
        """Close the underlying async and sync HTTP clients."""
        if not self._closed:
            await self._transport.aclose()
            if self._owns_store and hasattr(self._store, "aclose"):
                await self._store.aclose()
            if self._owns_store and hasattr(self._store, "close"):
                self._store.close()
            self._closed = True
            logger.debug("VespaClient closed (async) base_url=%s", self._config.base_url)

    def __enter__(self) -> VespaClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    async def __aenter__(self) -> VespaClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def search(
    query: str,
    options: Mapping[str, Any] | None = None,
    *,
    base_url: str | None = None,
    api_key: str | None = None,
    language: str | None = None,
    timeout: float | None = None,
    _transport_override: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    """Run one search against Vespa (one-shot convenience).

    Creates a temporary client for a single call. For repeated use, prefer
    ``VespaClient``, which keeps a connection pool and shares admission
    counters between calls.

    Args:
        query: Search text (must be non-empty).
        options: Extra request body parameters.
        base_url: Vespa endpoint. Falls back to VESPA_URL.
        api_key: Bearer token. Falls back to VESPA_API_KEY.
        language: Query language. Falls back to VESPA_DEFAULT_LANGUAGE.
        timeout: HTTP read timeout in seconds.

    Raises:
        ValueError: If the query is empty or too long.
        AdmissionError: If the rate limit or throttle rejects the call.
        RetriesExhausted: If every attempt failed.
    """
    config = VespaConfig.from_env(
        base_url=base_url, api_key=api_key, language=language, timeout_read=timeout
    )
    with VespaClient(config, _sync_transport=_transport_override) as client:
        return client.search(query, options)


async def asearch(
    query: str,
    options: Mapping[str, Any] | None = None,
    *,
    base_url: str | None = None,
    api_key: str | None = None,
    language: str | None = None,
    timeout: float | None = None,
    _transport_override: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Async variant of search() (one-shot convenience)."""
    config = VespaConfig.from_env(
        base_url=base_url, api_key=api_key, language=language, timeout_read=timeout
    )
    async with VespaClient(config, _async_transport=_transport_override) as client:
        return await client.asearch(query, options)
