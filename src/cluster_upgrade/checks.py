"""
Health check providers consumed by the readiness checker.

The registry is a fixed list built from configuration; add or remove a
check by editing build_providers().
"""

import json
import logging
from typing import List, Optional

from cluster_upgrade.clients import RemoteStepClient
from cluster_upgrade.cluster import HEALTH_CATEGORIES, PacemakerAdapter
from cluster_upgrade.errors import ProbeError
from cluster_upgrade.inventory import NodeInventory
from cluster_upgrade.models import Detail

logger = logging.getLogger(__name__)

HELP = {
    "network_checks": "Fix the network configuration reported by the sanity checks.",
    "maintenance_updates_installed": "Install the latest maintenance updates on all nodes.",
    "compute_resources_available": "Free or add compute capacity so instances can be live-migrated.",
    "ceph_healthy": "Bring the Ceph cluster back to HEALTH_OK before upgrading.",
    "clusters_health_crm_failures": "Resolve the pacemaker failures on nodes: {nodes}",
    "clusters_health_failed_actions": "Clean up failed pacemaker actions on nodes: {nodes}",
}


class HealthCheckProvider:
    """Base class for health checks."""

    check_id = ""
    required = True

    def check(self) -> List[Detail]:
        """
        Run the probe.

        Returns:
            List of problems, empty if healthy
        """
        raise NotImplementedError("Subclasses must implement check()")


class ScriptCheckProvider(HealthCheckProvider):
    """Runs a probe script on a node; the script prints a JSON list of errors."""

    def __init__(
        self,
        check_id: str,
        required: bool,
        client: RemoteStepClient,
        node,
        command: str,
        timeout: int = 60,
        help_text: Optional[str] = None,
    ):
        self.check_id = check_id
        self.required = required
        self.client = client
        self.node = node
        self.command = command
        self.timeout = timeout
        self.help_text = help_text or HELP.get(check_id, "")

    def check(self) -> List[Detail]:
        outcome = self.client.run(self.node, self.command, self.timeout)
        if not outcome.succeeded:
            raise ProbeError(
                self.check_id, f"{self.command} on {self.node.name} {outcome.describe()}"
            )
        try:
            errors = json.loads(outcome.output or "[]")
        except ValueError as e:
            raise ProbeError(self.check_id, f"unparseable probe output: {e}")
        if not errors:
            return []
        return [Detail(code=self.check_id, data=errors, help=self.help_text)]


class HaPresenceCheck(HealthCheckProvider):
    """Reports when no HA clusters are deployed."""

    check_id = "ha_configured"
    required = False

    def __init__(self, adapter: PacemakerAdapter):
        self.adapter = adapter

    def check(self) -> List[Detail]:
        return self.adapter.presence_check()


class ClusterHealthCheck(HealthCheckProvider):
    """Converts the pacemaker health report into per-category details."""

    check_id = "clusters_healthy"
    required = True

    def __init__(self, adapter: PacemakerAdapter):
        self.adapter = adapter

    def check(self) -> List[Detail]:
        report = self.adapter.health_report()
        details = []
        for category in HEALTH_CATEGORIES:
            failures = report.get(category)
            if not failures:
                continue
            code = f"clusters_health_{category}"
            details.append(
                Detail(
                    code=code,
                    data=list(failures.values()),
                    help=HELP[code].format(nodes=",".join(sorted(failures))),
                )
            )
        return details


def build_providers(
    config,
    client: RemoteStepClient,
    inventory: NodeInventory,
    adapter: PacemakerAdapter,
) -> List[HealthCheckProvider]:
    """Build the ordered list of readiness checks for this deployment."""
    admin = inventory.admin_node()
    commands = config.commands
    timeout = config.probe_timeout

    providers: List[HealthCheckProvider] = [
        ScriptCheckProvider(
            "network_checks", True, client, admin, commands.network_check, timeout
        ),
        ScriptCheckProvider(
            "maintenance_updates_installed",
            True,
            client,
            admin,
            commands.maintenance_check,
            timeout,
        ),
        ScriptCheckProvider(
            "compute_resources_available",
            False,
            client,
            admin,
            commands.compute_resources_check,
            timeout,
        ),
    ]
    if config.storage_enabled:
        providers.append(
            ScriptCheckProvider(
                "ceph_healthy", True, client, admin, commands.storage_check, timeout
            )
        )
    providers.append(HaPresenceCheck(adapter))
    if inventory.ha_groups():
        providers.append(ClusterHealthCheck(adapter))

    logger.debug(f"Registered checks: {', '.join(p.check_id for p in providers)}")
    return providers
