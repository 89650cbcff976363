"""vespakit: resilient Vespa search client for services, pipelines and RAG agents."""

from vespakit.client import VespaClient, asearch, search
from vespakit.config import VespaConfig
from vespakit.logging import bind_request_id, configure_logging, get_request_id
from vespakit.models import (
    AdmissionError,
    AllNodesDown,
    BatchResult,
    NodeHealth,
    RateLimitExceeded,
    RequestFailed,
    RetriesExhausted,
    SearchHit,
    SearchResult,
    ThrottleExceeded,
    VespaCancelledError,
    VespaConnectionError,
    VespaError,
    VespaResponseError,
)
from vespakit.plugins import KeywordAppendPlugin, PluginPipeline, QueryPlugin, SynonymExpansionPlugin
from vespakit.query import QueryBuilder

__version__ = "0.1.0"

__all__ = [
    "AdmissionError",
    "AllNodesDown",
    "BatchResult",
    "KeywordAppendPlugin",
    "NodeHealth",
    "PluginPipeline",
    "QueryBuilder",
    "QueryPlugin",
    "RateLimitExceeded",
    "RequestFailed",
    "RetriesExhausted",
    "SearchHit",
    "SearchResult",
    "SynonymExpansionPlugin",
    "ThrottleExceeded",
    "VespaCancelledError",
    "VespaClient",
    "VespaConfig",
    "VespaConnectionError",
    "VespaError",
    "VespaResponseError",
    "__version__",
    "asearch",
    "bind_request_id",
    "configure_logging",
    "get_request_id",
    "search",
]
