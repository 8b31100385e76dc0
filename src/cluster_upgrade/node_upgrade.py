"""
Per-node upgrade state machine.

A clustered controller goes through select, upgrade, promote,
clear_pending_flag, cleanup_resources and post_upgrade. Standalone
controllers and compute nodes only run upgrade and post_upgrade. The
progress record is checkpointed before every state, so a restarted run
continues at the state that did not complete.
"""

import logging
import threading
from typing import Callable, Optional, Sequence

from cluster_upgrade.clients import RemoteStepClient
from cluster_upgrade.cluster import PacemakerAdapter
from cluster_upgrade.errors import UpgradeCancelled
from cluster_upgrade.inventory import NodeInventory
from cluster_upgrade.models import (
    CONTROLLER_STEPS,
    STANDALONE_STEPS,
    HaGroup,
    Node,
    NodeState,
    StepName,
    UpgradeProgress,
)
from cluster_upgrade.roles import ReplicaRoleResolver

logger = logging.getLogger(__name__)


class NodeUpgradeStep:
    """Drives one node through its upgrade states."""

    def __init__(
        self,
        client: RemoteStepClient,
        adapter: PacemakerAdapter,
        resolver: ReplicaRoleResolver,
        inventory: NodeInventory,
        config,
        checkpoint: Callable[[str], None],
        cancelled: Optional[threading.Event] = None,
    ):
        """
        Args:
            client: Remote step client for node-local scripts
            adapter: Cluster resource manager adapter
            resolver: Replica role resolver used by the select state
            inventory: Node inventory
            config: UpgraderConfig with commands and timeouts
            checkpoint: Persists the shared progress record with a message
            cancelled: Event checked between states
        """
        self.client = client
        self.adapter = adapter
        self.resolver = resolver
        self.inventory = inventory
        self.config = config
        self.checkpoint = checkpoint
        self.cancelled = cancelled or threading.Event()

    def upgrade_group_member(self, group: HaGroup, progress: UpgradeProgress) -> Node:
        """
        Upgrade the next member of an HA group, resuming an interrupted one.

        Returns:
            The node that was upgraded
        """
        if (
            progress.current_node in group.member_names()
            and progress.current_step not in (None, StepName.SELECT)
        ):
            target = self.inventory.get(progress.current_node)
            logger.info(
                f"Resuming upgrade of {target.name} at state {progress.current_step.value}"
            )
            start = progress.current_step
        else:
            target = self.select(group, progress)
            start = StepName.UPGRADE

        self._run_states(target, group, CONTROLLER_STEPS, start, progress)
        return target

    def upgrade_standalone(self, node: Node, progress: UpgradeProgress) -> None:
        """Upgrade a node that is not part of an HA group."""
        if progress.current_node == node.name and progress.current_step in STANDALONE_STEPS:
            logger.info(
                f"Resuming upgrade of {node.name} at state {progress.current_step.value}"
            )
            start = progress.current_step
        else:
            self._mark(progress, node, NodeState.UPGRADING)
            progress.current_node = node.name
            progress.coordinator = None
            progress.current_step = StepName.UPGRADE
            self.checkpoint(f"Starting the upgrade of node {node.name}")
            start = StepName.UPGRADE

        self._run_states(node, None, STANDALONE_STEPS, start, progress)

    def select(self, group: HaGroup, progress: UpgradeProgress) -> Node:
        """
        Pick the next member of the group to upgrade.

        The first round upgrades the replication slave and issues cluster
        commands from the master. Later rounds upgrade the remaining
        members by name and issue cluster commands from the new leader.
        A recorded leader that is not upgraded (after a cancel) does not
        count; the round starts over from the replica roles.
        """
        self._check_cancelled()
        leader = progress.group_leaders.get(group.name)
        if leader is not None and progress.node_state(leader) != NodeState.UPGRADED:
            logger.info(
                f"Recorded leader {leader} of {group.name} is not upgraded, resolving roles again"
            )
            del progress.group_leaders[group.name]
            leader = None
        if leader is None:
            master, target = self.resolver.resolve(group)
            coordinator = master.name
        else:
            pending = [
                m
                for m in group.members
                if progress.node_state(m.name) != NodeState.UPGRADED
            ]
            target = pending[0]
            coordinator = leader

        self._mark(progress, target, NodeState.UPGRADING)
        progress.current_node = target.name
        progress.coordinator = coordinator
        progress.current_step = StepName.UPGRADE
        self.checkpoint(f"Starting the upgrade of node {target.name}")
        return target

    def _run_states(
        self,
        target: Node,
        group: Optional[HaGroup],
        steps: Sequence[StepName],
        start: StepName,
        progress: UpgradeProgress,
    ) -> None:
        remaining = list(steps[steps.index(start):])
        self._mark(progress, target, NodeState.UPGRADING)

        for index, step in enumerate(remaining):
            self._check_cancelled()
            logger.info(f"[{target.name}] {step.value}")
            message = self._handlers()[step](target, group, progress)

            following = remaining[index + 1] if index + 1 < len(remaining) else None
            progress.current_step = following
            if following is None:
                self._mark(progress, target, NodeState.UPGRADED)
                progress.current_node = None
                progress.coordinator = None
                message = f"Node {target.name} has been upgraded"
            self.checkpoint(message)

    def _handlers(self):
        return {
            StepName.UPGRADE: self.upgrade,
            StepName.PROMOTE: self.promote,
            StepName.CLEAR_PENDING_FLAG: self.clear_pending_flag,
            StepName.CLEANUP_RESOURCES: self.cleanup_resources,
            StepName.POST_UPGRADE: self.post_upgrade,
        }

    def upgrade(self, target: Node, group, progress) -> str:
        self.client.wait_for_script(
            target,
            self.config.commands.upgrade,
            self.config.upgrade_timeout,
            step=StepName.UPGRADE,
            log_path=self.config.commands.node_upgrade_log,
        )
        return f"Packages of node {target.name} have been upgraded"

    def promote(self, target: Node, group: HaGroup, progress: UpgradeProgress) -> str:
        """Make the upgraded node founder of its group; safe to repeat."""
        leader = progress.group_leaders.get(group.name)
        if leader is not None and leader != target.name:
            logger.info(f"Group {group.name} is already led by {leader}")
            return f"Group {group.name} is already led by {leader}"
        self.adapter.set_leader(target)
        progress.group_leaders[group.name] = target.name
        return f"Node {target.name} is the founder of cluster {group.name}"

    def clear_pending_flag(
        self, target: Node, group: HaGroup, progress: UpgradeProgress
    ) -> str:
        # Must run where pacemaker tooling still works, never on the target
        run_on = self.inventory.get(progress.coordinator)
        self.adapter.clear_pending_flag(run_on=run_on, target=target)
        return f"Removed the pre-upgrade attribute of {target.name} via {run_on.name}"

    def cleanup_resources(
        self, target: Node, group: HaGroup, progress: UpgradeProgress
    ) -> str:
        if group.name in progress.cleaned_groups:
            logger.info(f"Resources of cluster {group.name} were already deleted")
            return f"Resources of cluster {group.name} were already deleted"
        run_on = self.inventory.get(progress.coordinator)
        self.adapter.delete_resources(run_on, self.config.cleanup_timeout)
        progress.cleaned_groups.append(group.name)
        return "Deleting pacemaker resources was successful."

    def post_upgrade(self, target: Node, group, progress) -> str:
        self.client.wait_for_script(
            target,
            self.config.commands.post_upgrade,
            self.config.upgrade_timeout,
            step=StepName.POST_UPGRADE,
            log_path=self.config.commands.node_upgrade_log,
        )
        return f"Post-upgrade actions on {target.name} finished"

    def _check_cancelled(self) -> None:
        if self.cancelled.is_set():
            raise UpgradeCancelled("Upgrade was cancelled")

    @staticmethod
    def _mark(progress: UpgradeProgress, node: Node, state: NodeState) -> None:
        progress.node_states[node.name] = state
        node.state = state
