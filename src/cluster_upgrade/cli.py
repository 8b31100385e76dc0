"""Console entry point for the cluster upgrade orchestrator CLI."""

from __future__ import annotations

import argparse
import json
import logging
from typing import List

from cluster_upgrade.config import UpgraderConfig
from cluster_upgrade.errors import InventoryError
from cluster_upgrade.log_utils import setup_logging
from cluster_upgrade.upgrade_api import OK, UNPROCESSABLE, UpgradeApi

logger = logging.getLogger(__name__)

COMMANDS = {
    "status": "Show the stored upgrade progress",
    "checks": "Run the readiness checks and print the recommended method",
    "services": "Prepare all nodes and stop non-essential services",
    "advance": "Upgrade nodes, resuming after the last completed step",
    "cancel": "Cancel the upgrade and revert nodes to normal operation",
    "repocheck": "Check the product repositories on the admin node",
    "node-repocheck": "Check the target repositories on every cluster node",
}


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    defaults = UpgraderConfig()

    parser = argparse.ArgumentParser(
        description="Rolling upgrade orchestrator for HA controller/compute clusters"
    )
    parser.add_argument("command", choices=sorted(COMMANDS), help="Action to run")
    parser.add_argument(
        "--inventory",
        default=defaults.inventory_path,
        help="JSON inventory of cluster nodes",
    )
    parser.add_argument(
        "--state-file",
        default=defaults.state_path,
        help="Where upgrade progress is persisted",
    )
    parser.add_argument(
        "--transport", choices=["ssh", "agent"], default=defaults.transport
    )
    parser.add_argument("--ssh-user", default=defaults.ssh_user)
    parser.add_argument("--agent-port", type=int, default=defaults.agent_port)
    parser.add_argument(
        "--upgrade-timeout", type=int, default=defaults.upgrade_timeout
    )
    parser.add_argument(
        "--cleanup-timeout", type=int, default=defaults.cleanup_timeout
    )
    parser.add_argument("--probe-timeout", type=int, default=defaults.probe_timeout)
    parser.add_argument(
        "--storage",
        action="store_true",
        help="The cluster runs Ceph; require a healthy storage cluster",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    config = UpgraderConfig.from_args(args)
    setup_logging(verbose=config.verbose, log_file=config.log_file)

    try:
        api = UpgradeApi.from_config(config)
    except InventoryError as e:
        logger.error(str(e))
        print(json.dumps({"status": UNPROCESSABLE, "message": str(e)}, indent=2))
        return 1

    handlers = {
        "status": api.status,
        "checks": api.checks,
        "services": api.services,
        "advance": api.nodes,
        "cancel": api.cancel,
        "repocheck": api.admin_repo_check,
        "node-repocheck": api.node_repo_check,
    }
    result = handlers[args.command]()
    print(json.dumps(result, indent=2))
    return 0 if result.get("status") == OK else 1
