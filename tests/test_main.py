"""Tests for the CLI entry point (python -m vespakit)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from vespakit.__main__ import main
from vespakit.models import AllNodesDown, NodeHealth, VespaConnectionError

BODY = {"root": {"fields": {"totalCount": 1}, "children": []}}


def _mock_client() -> MagicMock:
    instance = MagicMock()
    instance.__enter__ = MagicMock(return_value=instance)
    instance.__exit__ = MagicMock(return_value=False)
    return instance


def _run(monkeypatch: pytest.MonkeyPatch, argv: list[str], client: MagicMock) -> None:
    monkeypatch.setattr("sys.argv", ["vespakit", *argv])
    with patch("vespakit.__main__.VespaClient", return_value=client):
        main()


def test_search_success(capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    client.search.return_value = BODY
    _run(monkeypatch, ["search", "install", "guide", "--hits", "5"], client)

    client.search.assert_called_once_with("install guide", {"hits": 5})
    assert json.loads(capsys.readouterr().out) == BODY


def test_search_page_and_ranking(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    client.search.return_value = BODY
    _run(
        monkeypatch,
        ["search", "install", "--page", "3", "--hits", "20", "--ranking-profile", "bm25"],
        client,
    )
    client.search.assert_called_once_with(
        "install", {"ranking.profile": "bm25", "hits": 20, "offset": 40}
    )


def test_search_with_nodes_uses_failover(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    client.search_with_failover.return_value = BODY
    _run(
        monkeypatch,
        ["search", "install", "--node", "http://a:8080", "--node", "http://b:8080"],
        client,
    )
    client.search_with_failover.assert_called_once_with(
        "install", ["http://a:8080", "http://b:8080"], {}
    )
    client.search.assert_not_called()


def test_language_flag_reaches_config(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    client.search.return_value = BODY
    monkeypatch.setattr("sys.argv", ["vespakit", "search", "hallo", "--language", "de"])
    with patch("vespakit.__main__.VespaClient", return_value=client) as factory:
        main()
    config = factory.call_args.args[0]
    assert config.language == "de"


def test_health(capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    client.health_check.return_value = {
        "http://a:8080": NodeHealth.HEALTHY,
        "http://b:8080": NodeHealth.UNREACHABLE,
    }
    _run(monkeypatch, ["health", "http://a:8080", "http://b:8080"], client)

    client.health_check.assert_called_once_with(["http://a:8080", "http://b:8080"])
    assert json.loads(capsys.readouterr().out) == {
        "http://a:8080": "Healthy",
        "http://b:8080": "Unreachable",
    }


def test_health_defaults_to_configured_node(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    client.health_check.return_value = {}
    _run(monkeypatch, ["health"], client)
    client.health_check.assert_called_once_with(None)


def test_no_args(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.argv", ["vespakit"])
    with pytest.raises(SystemExit):
        main()


def test_search_requires_query(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.argv", ["vespakit", "search"])
    with pytest.raises(SystemExit):
        main()


@pytest.mark.parametrize(
    "error",
    [VespaConnectionError("unreachable"), AllNodesDown(["a"], []), ValueError("bad query")],
)
def test_library_errors_exit_1(
    error: Exception, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    client = _mock_client()
    client.search.side_effect = error
    with pytest.raises(SystemExit, match="1"):
        _run(monkeypatch, ["search", "install"], client)
    assert capsys.readouterr().err.startswith("Error: ")


def test_bad_page(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_client()
    with pytest.raises(SystemExit, match="1"):
        _run(monkeypatch, ["search", "install", "--page", "0"], client)
    client.search.assert_not_called()
