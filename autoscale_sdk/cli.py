# autoscale_sdk/cli.py
# SPDX-License-Identifier: Apache-2.0
"""
Autoscale SDK CLI

Sample the Temporal running-workflow metric once, the same way an autoscaler
would, to check connectivity, credentials and query filters.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from autoscale_sdk.metrics.metrics_base import MetricCollectorError, OperationContext
from autoscale_sdk.metrics.temporal_collector import TemporalMetricCollector

logger = logging.getLogger(__name__)

# Configuration from environment
DEFAULT_TIMEOUT_MS = int(os.environ.get("AUTOSCALE_TIMEOUT_MS", "10000"))
LOG_LEVEL = os.environ.get("AUTOSCALE_LOG_LEVEL", "WARNING")


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #

def _build_collector(args: argparse.Namespace) -> TemporalMetricCollector:
    """Environment first, then explicit flags on top."""
    collector = TemporalMetricCollector.from_env(args.name)
    if args.address:
        collector.address = args.address
    if args.namespace:
        collector.namespace = args.namespace
    if args.query is not None:
        collector.query = args.query
    return collector


def _ctx(args: argparse.Namespace) -> Optional[OperationContext]:
    if args.timeout_ms <= 0:
        return None
    return OperationContext.with_timeout(args.timeout_ms, request_id="cli")


async def _collect(collector: TemporalMetricCollector, args: argparse.Namespace) -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    await collector.open(ctx=_ctx(args))
    try:
        for app in args.apps:
            if args.show_query:
                print(f"# {app}: {collector.build_query(app)}", file=sys.stderr)
            results[app] = await collector.collect_metric(app, ctx=_ctx(args))
    finally:
        await collector.close()
    return results


async def _health(collector: TemporalMetricCollector, args: argparse.Namespace) -> Dict[str, Any]:
    await collector.open(ctx=_ctx(args))
    try:
        return await collector.health(ctx=_ctx(args))
    finally:
        await collector.close()


def _print_results(results: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(results, sort_keys=True))
        return
    for key, value in results.items():
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        print(f"{key}\t{value}")


def _add_connection_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--name", default="temporal", help="Collector name (default: temporal)")
    p.add_argument("--address", help="Temporal frontend host:port (env: TEMPORAL_ADDRESS)")
    p.add_argument("--namespace", help="Temporal namespace (env: TEMPORAL_NAMESPACE)")
    p.add_argument(
        "--timeout-ms",
        type=int,
        default=DEFAULT_TIMEOUT_MS,
        help=f"Per-call deadline in ms, 0 disables (default: {DEFAULT_TIMEOUT_MS})",
    )
    p.add_argument("--json", action="store_true", help="Print results as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoscale-metrics",
        description="Autoscale SDK CLI - sample workflow metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  autoscale-metrics collect my-app
  autoscale-metrics collect app-a app-b --query 'TaskQueue="${APP_NAME}"'
  autoscale-metrics health --json

Configuration (environment variables):
  TEMPORAL_ADDRESS          Frontend host:port
  TEMPORAL_NAMESPACE        Namespace
  TEMPORAL_API_KEY          API key (enables TLS)
  TEMPORAL_TLS_CERT[_DATA]  Client certificate (path or PEM text)
  TEMPORAL_TLS_KEY[_DATA]   Client private key (path or PEM text)
  TEMPORAL_METRIC_QUERY     Extra visibility query filter
  AUTOSCALE_LOG_LEVEL       Logging level (default: WARNING)
        """.strip(),
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        help="command to execute",
        metavar="COMMAND",
    )

    collect_parser = subparsers.add_parser(
        "collect",
        help="Count running workflows for one or more apps",
        aliases=["sample"],
    )
    collect_parser.add_argument("apps", nargs="+", metavar="APP", help="Application name(s)")
    collect_parser.add_argument(
        "--query",
        help="Visibility query fragment ANDed with the running filter (env: TEMPORAL_METRIC_QUERY)",
    )
    collect_parser.add_argument(
        "--show-query",
        action="store_true",
        help="Print the expanded query for each app to stderr",
    )
    _add_connection_args(collect_parser)

    health_parser = subparsers.add_parser("health", help="Check the Temporal frontend health")
    health_parser.set_defaults(query=None)
    _add_connection_args(health_parser)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        collector = _build_collector(args)
        if args.command in ("collect", "sample"):
            results = asyncio.run(_collect(collector, args))
        else:
            results = asyncio.run(_health(collector, args))
    except MetricCollectorError as e:
        print(f"error: {e.message} [{e.code}]", file=sys.stderr)
        return 2
    except Exception as e:  # noqa: BLE001
        logger.debug("command %s failed", args.command, exc_info=True)
        print(f"error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    _print_results(results, args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
