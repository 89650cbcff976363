"""CLI entry point: python -m vespakit search 'your query'

Subcommands:
    search  Run a search (with failover when --node is given).
    health  Probe one or more nodes.
"""

import argparse
import json
import logging
import sys

from vespakit.client import VespaClient
from vespakit.config import VespaConfig
from vespakit.logging import bind_request_id, configure_logging
from vespakit.models import VespaError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vespakit",
        description="Query a Vespa search cluster",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable DEBUG-level logging to stderr"
    )
    parser.add_argument(
        "--json-log", action="store_true", help="Emit JSON log lines (default: text)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search_cmd = sub.add_parser("search", help="Run a search and print the JSON body")
    search_cmd.add_argument("query", nargs="+", help="Search query")
    search_cmd.add_argument("--hits", type=int, default=None, help="Hits per page")
    search_cmd.add_argument("--page", type=int, default=None, help="1-based page number")
    search_cmd.add_argument("--language", type=str, default=None, help="Query language")
    search_cmd.add_argument(
        "--ranking-profile", type=str, default=None, help="Ranking profile to use"
    )
    search_cmd.add_argument(
        "--node",
        action="append",
        default=[],
        metavar="URL",
        help="Candidate endpoint; repeat for failover order",
    )

    health_cmd = sub.add_parser("health", help="Probe nodes and print their status")
    health_cmd.add_argument("nodes", nargs="*", help="Node URLs (default: VESPA_URL)")
    return parser


def _run_search(client: VespaClient, args: argparse.Namespace) -> object:
    query = " ".join(args.query)
    options: dict[str, object] = {}
    if args.ranking_profile:
        options["ranking.profile"] = args.ranking_profile
    if args.hits is not None:
        options["hits"] = args.hits
    if args.page is not None:
        if args.page < 1:
            raise ValueError(f"--page must be >= 1, got {args.page}")
        per_page = args.hits or 10
        options["hits"] = per_page
        options["offset"] = (args.page - 1) * per_page
    if args.node:
        return client.search_with_failover(query, args.node, options)
    return client.search(query, options)


def main() -> None:
    args = _build_parser().parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    configure_logging(level=level, json_format=args.json_log)
    bind_request_id()

    try:
        config = VespaConfig.from_env(language=getattr(args, "language", None))
        with VespaClient(config) as client:
            if args.command == "health":
                statuses = client.health_check(args.nodes or None)
                output: object = {node: status.value for node, status in statuses.items()}
            else:
                output = _run_search(client, args)
    except (VespaError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
