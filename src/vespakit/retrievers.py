"""
LangChain retriever adapter for Vespa.

Requires the optional dependency: pip install vespakit[langchain]

Provides VespaRetriever, a LangChain BaseRetriever that runs a Vespa search
via vespakit.client and returns LangChain Documents.

Example:
    from vespakit.retrievers import VespaRetriever
    retriever = VespaRetriever(base_url="http://127.0.0.1:8080", hits=5, content_field="body")
    docs = retriever.invoke("How do I deploy an application package?")
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from langchain_core.callbacks import (
    AsyncCallbackManagerForRetrieverRun,
    CallbackManagerForRetrieverRun,
)
from langchain_core.documents import Document
from langchain_core.retrievers import BaseRetriever

from vespakit.client import VespaClient
from vespakit.config import VespaConfig
from vespakit.models import SearchHit, SearchResult, VespaError

logger = logging.getLogger(__name__)


def _hit_to_langchain(hit: SearchHit, content_field: str) -> Document:
    """Convert a SearchHit to a LangChain Document; the content field becomes page_content."""
    fields = dict(hit.fields)
    content = fields.pop(content_field, "")
    page_content = str(content).strip() if content is not None else ""
    metadata: dict[str, Any] = {
        "id": hit.id,
        "relevance": hit.relevance,
        "source": hit.source,
        **fields,
    }
    return Document(page_content=page_content or "(No content)", metadata=metadata)


class VespaRetriever(BaseRetriever):
    """LangChain retriever backed by a Vespa search cluster.

    Runs one search per query and returns one Document per hit. On vespakit
    errors, returns an empty list by default (so chains degrade gracefully)
    unless raise_on_error is True.

    A pre-built ``client`` is reused across queries so admission counters
    are shared; otherwise a client is created per query from ``base_url``
    and the environment.
    """

    client: Optional[VespaClient] = None
    base_url: Optional[str] = None
    hits: Optional[int] = None
    language: Optional[str] = None
    ranking_profile: Optional[str] = None
    content_field: str = "text"
    search_options: Dict[str, Any] = {}
    raise_on_error: bool = False

    model_config = {"arbitrary_types_allowed": True}

    def _options(self) -> dict[str, Any]:
        options = dict(self.search_options)
        if self.hits is not None:
            options["hits"] = self.hits
        if self.ranking_profile is not None:
            options["ranking.profile"] = self.ranking_profile
        return options

    def _to_documents(self, query: str, body: Any, t0: float, label: str) -> List[Document]:
        result = SearchResult.from_response(body)
        out: List[Document] = []
        for hit in result.hits:
            try:
                out.append(_hit_to_langchain(hit, self.content_field))
            except Exception as exc:
                logger.warning("VespaRetriever: skipped malformed hit: %s", exc)

        elapsed = (time.monotonic() - t0) * 1000
        logger.info(
            "%s: query=%r total_count=%d returned=%d elapsed_ms=%.1f",
            label,
            query,
            result.total_count,
            len(out),
            elapsed,
        )
        return out

    def _fail(self, exc: Exception, t0: float, label: str) -> List[Document]:
        elapsed = (time.monotonic() - t0) * 1000
        if self.raise_on_error:
            raise RuntimeError(str(exc)) from exc
        logger.warning("%s: %s (%.1fms)", label, exc, elapsed)
        return []

    def _get_relevant_documents(
        self,
        query: str,
        *,
        run_manager: Optional[CallbackManagerForRetrieverRun] = None,
    ) -> List[Document]:
        query = (query or "").strip()
        if not query:
            logger.warning("VespaRetriever: empty query, returning no documents")
            return []

        logger.debug("VespaRetriever: query=%r language=%r", query, self.language)
        t0 = time.monotonic()

        try:
            if self.client is not None:
                body = self.client.search(query, self._options(), language=self.language)
            else:
                config = VespaConfig.from_env(base_url=self.base_url)
                with VespaClient(config) as client:
                    body = client.search(query, self._options(), language=self.language)
            return self._to_documents(query, body, t0, "VespaRetriever")
        except (VespaError, ValueError) as exc:
            return self._fail(exc, t0, "VespaRetriever")

    async def _aget_relevant_documents(
        self,
        query: str,
        *,
        run_manager: Optional[AsyncCallbackManagerForRetrieverRun] = None,
    ) -> List[Document]:
        """Native async retrieval using asearch() -- no thread pool needed."""
        query = (query or "").strip()
        if not query:
            return []

        logger.debug("VespaRetriever async: query=%r", query)
        t0 = time.monotonic()

        try:
            if self.client is not None:
                body = await self.client.asearch(query, self._options(), language=self.language)
            else:
                config = VespaConfig.from_env(base_url=self.base_url)
                async with VespaClient(config) as client:
                    body = await client.asearch(query, self._options(), language=self.language)
            return self._to_documents(query, body, t0, "VespaRetriever async")
        except (VespaError, ValueError) as exc:
            return self._fail(exc, t0, "VespaRetriever async")


__all__ = ["VespaRetriever"]
