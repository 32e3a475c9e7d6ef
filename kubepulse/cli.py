"""Command-line entry point for kubepulse.

Usage:
    python -m kubepulse.cli init-db
    python -m kubepulse.cli add-cluster --name prod --owner ops --endpoint https://k8s:6443 --token ...
    python -m kubepulse.cli add-target --cluster-id 1 --name prom --endpoint http://prometheus:9090
    python -m kubepulse.cli add-channel --owner ops --kind slack --name alerts --target https://hooks.slack.com/...
    python -m kubepulse.cli monitor
    python -m kubepulse.cli analyze
"""

import argparse
import asyncio
import json
import logging
import sys

from kubepulse.config import get_settings
from kubepulse.notify.dispatcher import SEVERITY_SCALE
from kubepulse.pipeline import run_analysis_pass, run_monitoring_pass
from kubepulse.store.clusters import save_cluster, save_prometheus_target
from kubepulse.store.db import get_initialized_connection
from kubepulse.store.notifications import save_channel

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kubepulse", description="Kubernetes cluster monitoring and analysis")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the store schema")

    cluster = sub.add_parser("add-cluster", help="Register a cluster")
    cluster.add_argument("--name", required=True)
    cluster.add_argument("--owner", required=True)
    cluster.add_argument("--endpoint", required=True, help="Kubernetes API server URL")
    cluster.add_argument("--token", required=True, help="Bearer token for the API server")
    cluster.add_argument("--ca-data", default=None, help="Base64-encoded CA bundle")
    cluster.add_argument("--namespace", default="default")

    target = sub.add_parser("add-target", help="Attach a Prometheus-compatible metrics source to a cluster")
    target.add_argument("--cluster-id", type=int, required=True)
    target.add_argument("--name", required=True)
    target.add_argument("--endpoint", required=True)
    target.add_argument("--auth-token", default=None)

    channel = sub.add_parser("add-channel", help="Register an outbound notification channel")
    channel.add_argument("--owner", required=True)
    channel.add_argument("--kind", choices=("slack", "email"), required=True)
    channel.add_argument("--name", required=True)
    channel.add_argument("--target", required=True, help="Webhook URL or email address")
    channel.add_argument("--cluster-id", type=int, default=None, help="Limit the channel to one cluster")
    channel.add_argument("--severity-threshold", choices=SEVERITY_SCALE, default=None)

    sub.add_parser("monitor", help="Run one monitoring pass and print the result")
    sub.add_parser("analyze", help="Run one analysis pass and print the result")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    conn = get_initialized_connection()
    try:
        if args.command == "init-db":
            print(f"Store initialized at {get_settings().database_path}")
        elif args.command == "add-cluster":
            cluster_id = save_cluster(
                conn,
                name=args.name,
                owner=args.owner,
                endpoint=args.endpoint,
                token=args.token,
                ca_data=args.ca_data,
                namespace=args.namespace,
            )
            print(f"Cluster {cluster_id} registered")
        elif args.command == "add-target":
            target_id = save_prometheus_target(
                conn, cluster_id=args.cluster_id, name=args.name, endpoint=args.endpoint, auth_token=args.auth_token
            )
            print(f"Target {target_id} registered")
        elif args.command == "add-channel":
            channel_id = save_channel(
                conn,
                owner=args.owner,
                kind=args.kind,
                name=args.name,
                target=args.target,
                cluster_id=args.cluster_id,
                severity_threshold=args.severity_threshold,
            )
            print(f"Channel {channel_id} registered")
        elif args.command == "monitor":
            print(json.dumps(asyncio.run(run_monitoring_pass(conn)), indent=2, default=str))
        elif args.command == "analyze":
            print(json.dumps(asyncio.run(run_analysis_pass(conn)), indent=2, default=str))
    except Exception as e:
        print(f"{args.command} failed: {e}", file=sys.stderr)
        return 1
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
