"""
Command-line entry point: ``python -m vdb_controller``.

Flags override the environment-derived settings.
"""
import argparse
import asyncio
import sys
from typing import Optional, Sequence

from vdb_controller.config.settings import Settings, parse_bind_address, settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vdb-controller",
        description="Reconciles VirtualDatabases into AWS RDS instances and DatabaseEndpoints.",
    )
    parser.add_argument(
        "--metrics-bind-address",
        default=None,
        help="The address the metric endpoint binds to (default: %s)" % settings.metrics_bind_address,
    )
    parser.add_argument(
        "--health-probe-bind-address",
        default=None,
        help="The address the probe endpoint binds to (default: %s)" % settings.health_probe_bind_address,
    )
    parser.add_argument(
        "--leader-elect",
        action="store_true",
        default=None,
        help="Enable leader election so only one active controller runs.",
    )
    parser.add_argument(
        "--webhook-port",
        type=int,
        default=None,
        help="Webhook server port (default: %d)" % settings.webhook_port,
    )
    parser.add_argument(
        "--max-concurrent-reconciles",
        type=int,
        default=None,
        help="Number of VirtualDatabases reconciled in parallel (default: %d)"
        % settings.max_concurrent_reconciles,
    )
    parser.add_argument(
        "--namespace",
        default=None,
        help="Only watch this namespace (default: all namespaces)",
    )
    return parser


def apply_args(args: argparse.Namespace, config: Settings) -> Settings:
    """Copy the flags that were given onto the settings object."""
    if args.metrics_bind_address is not None:
        parse_bind_address(args.metrics_bind_address)
        config.metrics_bind_address = args.metrics_bind_address
    if args.health_probe_bind_address is not None:
        parse_bind_address(args.health_probe_bind_address)
        config.health_probe_bind_address = args.health_probe_bind_address
    if args.leader_elect is not None:
        config.leader_elect = args.leader_elect
    if args.webhook_port is not None:
        config.webhook_port = args.webhook_port
    if args.max_concurrent_reconciles is not None:
        if args.max_concurrent_reconciles < 1:
            raise ValueError("--max-concurrent-reconciles must be at least 1")
        config.max_concurrent_reconciles = args.max_concurrent_reconciles
    if args.namespace is not None:
        config.watch_namespace = args.namespace or None
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        apply_args(args, settings)
    except ValueError as e:
        parser.error(str(e))

    # Imported late so logging picks up the final settings
    from vdb_controller.main import Manager

    try:
        asyncio.run(Manager(settings).run())
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
