"""Query plugins and the priority-ordered pipeline that runs them.

A plugin is any object with a ``handle(query) -> query`` method. Plugins run
in ascending priority; plugins sharing a priority run in registration order.
Each plugin receives the previous plugin's output.
"""

from __future__ import annotations

import bisect
import itertools
import logging
import re
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class QueryPlugin(Protocol):
    """Capability interface for query transformers.

    ``handle`` must accept any string and return a string. A plugin that
    does not want to change the query returns it unchanged.
    """

    def handle(self, query: str) -> str: ...


class PluginPipeline:
    """Ordered chain of :class:`QueryPlugin` objects."""

    def __init__(self) -> None:
        self._entries: list[tuple[int, int, QueryPlugin]] = []
        self._sequence = itertools.count()

    def register(self, plugin: QueryPlugin, priority: int = 0) -> None:
        if not isinstance(plugin, QueryPlugin):
            raise TypeError(f"{type(plugin).__name__} does not implement handle(query)")
        entry = (priority, next(self._sequence), plugin)
        bisect.insort(self._entries, entry, key=lambda e: (e[0], e[1]))
        logger.debug(
            "Registered plugin %s priority=%d (%d total)",
            type(plugin).__name__,
            priority,
            len(self._entries),
        )

    @property
    def plugins(self) -> list[QueryPlugin]:
        """Plugins in execution order."""
        return [plugin for _, _, plugin in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def execute(self, query: str) -> str:
        for priority, _, plugin in self._entries:
            result = plugin.handle(query)
            if not isinstance(result, str) or not result:
                logger.warning(
                    "Plugin %s (priority %d) returned %r; keeping previous query",
                    type(plugin).__name__,
                    priority,
                    result,
                )
                continue
            query = result
        return query


class KeywordAppendPlugin:
    """Append a fixed fragment to queries that contain a keyword.

    Args:
        keyword: Substring that must occur in the query. Without a keyword
            the plugin never fires.
        append: Fragment appended (after a space) when the keyword matches.
    """

    def __init__(self, keyword: str | None = None, append: str | None = None) -> None:
        self.keyword = keyword
        self.append = append

    def handle(self, query: str) -> str:
        logger.debug("KeywordAppendPlugin before: query=%r", query)
        if self.keyword and self.keyword in query and self.append:
            query = f"{query} {self.append}"
        logger.debug("KeywordAppendPlugin after: query=%r", query)
        return query


class SynonymExpansionPlugin:
    """Expand known abbreviations in the query to their full names.

    Replacement is case-sensitive and only matches whole words. The original
    token is kept alongside the expansion so exact-match boosts still fire::

        >>> SynonymExpansionPlugin({"k8s": "Kubernetes"}).handle("deploy k8s")
        'deploy k8s (Kubernetes)'
    """

    def __init__(self, synonyms: Mapping[str, str]) -> None:
        self._synonyms = dict(synonyms)
        if self._synonyms:
            # Longest first so overlapping keys prefer the longer match.
            keys = sorted(self._synonyms, key=len, reverse=True)
            self._pattern: re.Pattern[str] | None = re.compile(
                r"\b(" + "|".join(re.escape(k) for k in keys) + r")\b"
            )
        else:
            self._pattern = None

    def handle(self, query: str) -> str:
        if self._pattern is None:
            return query
        expanded = self._pattern.sub(
            lambda m: f"{m.group(0)} ({self._synonyms[m.group(0)]})", query
        )
        if expanded != query:
            logger.debug("SynonymExpansionPlugin: %r -> %r", query, expanded)
        return expanded
