"""Tests for vespakit.failover."""

from __future__ import annotations

import pytest

from vespakit.failover import arun_with_failover, run_with_failover
from vespakit.models import (
    AllNodesDown,
    BackendServerError,
    RateLimitExceeded,
    VespaCancelledError,
    VespaConnectionError,
)


class TestRunWithFailover:
    def test_first_success_wins(self) -> None:
        tried: list[str] = []

        def op(node: str) -> str:
            tried.append(node)
            if node != "c":
                raise VespaConnectionError(f"{node} down")
            return f"body from {node}"

        assert run_with_failover(["a", "b", "c", "d"], op) == "body from c"
        assert tried == ["a", "b", "c"]

    def test_all_fail(self) -> None:
        def op(node: str) -> str:
            raise BackendServerError(503, "unavailable")

        with pytest.raises(AllNodesDown) as exc_info:
            run_with_failover(["a", "b"], op)
        assert exc_info.value.nodes == ["a", "b"]
        assert [node for node, _ in exc_info.value.errors] == ["a", "b"]
        assert isinstance(exc_info.value.__cause__, BackendServerError)

    def test_repeated_node_records_each_failure(self) -> None:
        attempts = iter(["first", "second"])

        def op(node: str) -> str:
            raise VespaConnectionError(next(attempts))

        with pytest.raises(AllNodesDown) as exc_info:
            run_with_failover(["a", "a"], op)
        errors = exc_info.value.errors
        assert [(node, str(exc)) for node, exc in errors] == [("a", "first"), ("a", "second")]
        assert exc_info.value.__cause__ is errors[-1][1]

    def test_admission_error_stops_immediately(self) -> None:
        tried: list[str] = []

        def op(node: str) -> str:
            tried.append(node)
            raise RateLimitExceeded(1, 60)

        with pytest.raises(RateLimitExceeded):
            run_with_failover(["a", "b"], op)
        assert tried == ["a"]

    def test_cancellation_stops_immediately(self) -> None:
        def op(node: str) -> str:
            raise VespaCancelledError("cancelled")

        with pytest.raises(VespaCancelledError):
            run_with_failover(["a", "b"], op)

    def test_non_library_errors_propagate(self) -> None:
        def op(node: str) -> str:
            raise KeyError(node)

        with pytest.raises(KeyError):
            run_with_failover(["a", "b"], op)

    def test_empty_nodes(self) -> None:
        with pytest.raises(ValueError, match="at least one"):
            run_with_failover([], lambda node: node)


class TestAsyncFailover:
    async def test_first_success_wins(self) -> None:
        async def op(node: str) -> str:
            if node == "a":
                raise VespaConnectionError("a down")
            return node

        assert await arun_with_failover(["a", "b"], op) == "b"

    async def test_all_fail(self) -> None:
        async def op(node: str) -> str:
            raise VespaConnectionError(f"{node} down")

        with pytest.raises(AllNodesDown) as exc_info:
            await arun_with_failover(["a", "b", "c"], op)
        assert [node for node, _ in exc_info.value.errors] == ["a", "b", "c"]
