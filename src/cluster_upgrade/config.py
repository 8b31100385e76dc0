"""
Configuration management for the cluster upgrade orchestrator.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

ENV_PREFIX = "CLUSTER_UPGRADE_"


@dataclass
class NodeCommands:
    """Remote scripts and commands run on cluster nodes."""

    upgrade: str = "/usr/sbin/crowbar-upgrade-os.sh"
    post_upgrade: str = "/usr/sbin/crowbar-post-upgrade.sh"
    role_probe: str = (
        "LANG=C crm resource status ms-drbd-{postgresql,rabbitmq}"
        " | grep $(hostname) | grep -q Master"
    )
    leader_query: str = "test -e /var/lib/crowbar/upgrade/cluster-founder"
    set_leader: str = "/usr/sbin/crowbar-set-cluster-founder.sh"
    clear_pending_flag: str = "crm node attribute {node} delete pre-upgrade"
    delete_resources: str = "/usr/sbin/crowbar-delete-pacemaker-resources.sh"
    health_report: str = "/usr/sbin/crowbar-cluster-health-report.sh"
    prepare: str = "/usr/sbin/crowbar-prepare-node-for-upgrade.sh"
    shutdown_services: str = "/usr/sbin/crowbar-shutdown-services-before-upgrade.sh"
    revert: str = "/usr/sbin/crowbar-revert-node-from-upgrade.sh"
    network_check: str = "/usr/sbin/crowbar-check-network.sh"
    maintenance_check: str = "/usr/sbin/crowbar-check-maintenance-updates.sh"
    compute_resources_check: str = "/usr/sbin/crowbar-check-compute-resources.sh"
    storage_check: str = "/usr/sbin/crowbar-check-ceph-health.sh"
    repo_products: str = "sudo /usr/bin/zypper-retry --xmlout products"
    node_repo_check: str = "/usr/sbin/crowbar-check-repositories.sh {addon}"
    node_upgrade_log: str = "/var/log/crowbar/node-upgrade.log"


@dataclass
class UpgraderConfig:
    """Configuration for cluster upgrade operations."""

    inventory_path: str = "/etc/crowbar/upgrade-inventory.json"
    state_path: str = "/var/lib/crowbar/upgrade/progress.json"
    transport: str = "ssh"
    ssh_user: str = "root"
    agent_port: int = 8443
    agent_scheme: str = "https"
    upgrade_timeout: int = 3600
    cleanup_timeout: int = 300
    probe_timeout: int = 60
    command_timeout: int = 120
    storage_enabled: bool = False
    admin_architecture: str = "x86_64"
    verbose: bool = False
    log_file: str = "cluster-upgrade.log"
    commands: NodeCommands = field(default_factory=NodeCommands)

    @classmethod
    def from_args(cls, args) -> "UpgraderConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            UpgraderConfig instance
        """
        return cls(
            inventory_path=args.inventory,
            state_path=args.state_file,
            transport=args.transport,
            ssh_user=args.ssh_user,
            agent_port=args.agent_port,
            upgrade_timeout=args.upgrade_timeout,
            cleanup_timeout=args.cleanup_timeout,
            probe_timeout=args.probe_timeout,
            storage_enabled=args.storage,
            verbose=args.verbose,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "UpgraderConfig":
        """
        Create configuration from CLUSTER_UPGRADE_* environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def get_str(name: str, default: str) -> str:
            return env.get(ENV_PREFIX + name.upper(), default)

        def get_int(name: str, default: int) -> int:
            value = env.get(ENV_PREFIX + name.upper())
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name.upper()} must be an integer")

        def get_bool(name: str, default: bool) -> bool:
            value = env.get(ENV_PREFIX + name.upper())
            if value is None or value == "":
                return default
            return value.lower() in ("1", "true", "yes")

        return cls(
            inventory_path=get_str("inventory_path", defaults.inventory_path),
            state_path=get_str("state_path", defaults.state_path),
            transport=get_str("transport", defaults.transport),
            ssh_user=get_str("ssh_user", defaults.ssh_user),
            agent_port=get_int("agent_port", defaults.agent_port),
            agent_scheme=get_str("agent_scheme", defaults.agent_scheme),
            upgrade_timeout=get_int("upgrade_timeout", defaults.upgrade_timeout),
            cleanup_timeout=get_int("cleanup_timeout", defaults.cleanup_timeout),
            probe_timeout=get_int("probe_timeout", defaults.probe_timeout),
            command_timeout=get_int("command_timeout", defaults.command_timeout),
            storage_enabled=get_bool("storage_enabled", defaults.storage_enabled),
            admin_architecture=get_str(
                "admin_architecture", defaults.admin_architecture
            ),
            verbose=get_bool("verbose", defaults.verbose),
            log_file=get_str("log_file", defaults.log_file),
        )
