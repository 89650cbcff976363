"""Run one logical operation against a list of endpoints until one succeeds.

Node order is the caller's. Nothing is remembered between invocations: every
call starts again at the first node.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from vespakit.models import AdmissionError, AllNodesDown, VespaCancelledError, VespaError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Raised by every node alike, so trying the next node cannot help.
_FATAL = (AdmissionError, VespaCancelledError)


def _check_nodes(nodes: Sequence[str]) -> list[str]:
    nodes = list(nodes)
    if not nodes:
        raise ValueError("nodes must contain at least one endpoint")
    return nodes


def run_with_failover(nodes: Sequence[str], operation: Callable[[str], T]) -> T:
    """Return ``operation(node)`` for the first node that does not raise a VespaError.

    Raises:
        AllNodesDown: Every node failed. ``errors`` holds one ``(node, error)``
            pair per attempt, in order, so repeated nodes keep every failure.
        AdmissionError: Propagated immediately, without trying other nodes.
        ValueError: *nodes* is empty.
    """
    nodes = _check_nodes(nodes)
    errors: list[tuple[str, Exception]] = []
    for node in nodes:
        try:
            return operation(node)
        except _FATAL:
            raise
        except VespaError as exc:
            logger.warning("Node %s failed: %s", node, exc)
            errors.append((node, exc))
    raise AllNodesDown(nodes, errors) from errors[-1][1]


async def arun_with_failover(
    nodes: Sequence[str], operation: Callable[[str], Awaitable[T]]
) -> T:
    """Async variant of :func:`run_with_failover`."""
    nodes = _check_nodes(nodes)
    errors: list[tuple[str, Exception]] = []
    for node in nodes:
        try:
            return await operation(node)
        except _FATAL:
            raise
        except VespaError as exc:
            logger.warning("Node %s failed: %s", node, exc)
            errors.append((node, exc))
    raise AllNodesDown(nodes, errors) from errors[-1][1]
