"""
Adapter for the cluster resource manager (pacemaker) on HA groups.
"""

import json
import logging
from typing import Dict, List, Optional

from cluster_upgrade.clients import RemoteStepClient
from cluster_upgrade.config import NodeCommands
from cluster_upgrade.errors import ProbeError, RemoteStepFailure
from cluster_upgrade.inventory import NodeInventory
from cluster_upgrade.models import Detail, FailureKind, Node, StepName, StepOutcome

logger = logging.getLogger(__name__)

HEALTH_CATEGORIES = ("crm_failures", "failed_actions")


class PacemakerAdapter:
    """Leadership, cleanup and health operations on HA groups."""

    def __init__(
        self,
        client: RemoteStepClient,
        inventory: NodeInventory,
        commands: Optional[NodeCommands] = None,
        command_timeout: int = 120,
    ):
        self.client = client
        self.inventory = inventory
        self.commands = commands or NodeCommands()
        self.command_timeout = command_timeout

    def is_leader(self, node: Node) -> bool:
        """Return True if the node already acts as founder of its group."""
        outcome = self.client.run(node, self.commands.leader_query, self.command_timeout)
        if outcome.succeeded:
            return True
        if outcome.failure == FailureKind.EXIT:
            return False
        raise RemoteStepFailure(
            node.name, StepName.PROMOTE, outcome, action="leader query"
        )

    def set_leader(self, node: Node) -> bool:
        """
        Designate the node as founder of its HA group.

        Returns:
            True if leadership changed, False if the node already was leader
        """
        if self.is_leader(node):
            logger.info(f"{node.name} is already the founder of {node.ha_group}")
            return False
        self.client.wait_for_script(
            node, self.commands.set_leader, self.command_timeout, step=StepName.PROMOTE
        )
        logger.info(f"{node.name} is now the founder of {node.ha_group}")
        return True

    def clear_pending_flag(self, run_on: Node, target: Node) -> None:
        """Remove the pre-upgrade attribute of target, from a node with running tooling."""
        command = self.commands.clear_pending_flag.format(node=target.name)
        self.client.wait_for_script(
            run_on, command, self.command_timeout, step=StepName.CLEAR_PENDING_FLAG
        )

    def delete_resources(self, run_on: Node, timeout: int) -> None:
        """Delete stale cluster resources; may take minutes."""
        self.client.wait_for_script(
            run_on,
            self.commands.delete_resources,
            timeout,
            step=StepName.CLEANUP_RESOURCES,
            log_path=self.commands.node_upgrade_log,
        )

    def health_report(self) -> Dict[str, Dict[str, object]]:
        """
        Collect failures of every HA group, keyed by category then node.

        Raises:
            ProbeError: if no member of a group could produce a report
        """
        report: Dict[str, Dict[str, object]] = {}
        for group in self.inventory.ha_groups():
            group_report = self._group_health(group.members)
            if group_report is None:
                raise ProbeError(
                    "clusters_healthy",
                    f"no member of {group.name} returned a health report",
                )
            for category in HEALTH_CATEGORIES:
                failures = group_report.get(category) or {}
                if failures:
                    report.setdefault(category, {}).update(failures)
        return report

    def _group_health(self, members: List[Node]) -> Optional[Dict]:
        for member in members:
            outcome = self.client.run(
                member, self.commands.health_report, self.command_timeout
            )
            if not outcome.succeeded:
                logger.warning(
                    f"Health report from {member.name} {outcome.describe()}, trying next member"
                )
                continue
            try:
                return json.loads(outcome.output or "{}")
            except ValueError:
                logger.warning(f"Unparseable health report from {member.name}")
        return None

    def presence_check(self) -> List[Detail]:
        if self.inventory.ha_groups():
            return []
        return [
            Detail(
                code="ha_configured",
                data="No HA clusters are deployed",
                help="Deploy the pacemaker barclamp on the controllers to upgrade without downtime.",
            )
        ]

    def revert_node(self, node: Node) -> StepOutcome:
        return self.client.run(node, self.commands.revert, self.command_timeout)

    def prepare_node(self, node: Node) -> None:
        self.client.wait_for_script(node, self.commands.prepare, self.command_timeout)

    def shutdown_services(self, node: Node) -> None:
        self.client.wait_for_script(
            node, self.commands.shutdown_services, self.command_timeout
        )
