"""
Top-level control loop of the rolling upgrade.

Controllers are upgraded first, HA group by HA group, then compute
nodes. Every transition is persisted, and a failed run continues from
the stored phase, node and state when advance() is called again.
"""

import logging
import threading
from typing import List, Optional

from cluster_upgrade.cluster import PacemakerAdapter
from cluster_upgrade.errors import (
    ConcurrentUpdateError,
    PreconditionFailure,
    RoleResolutionError,
    RevertError,
    UpgradeError,
)
from cluster_upgrade.inventory import NodeInventory
from cluster_upgrade.models import NodeState, Phase, UpgradeMethod, UpgradeProgress
from cluster_upgrade.node_upgrade import NodeUpgradeStep
from cluster_upgrade.progress import UpgradeProgressStore
from cluster_upgrade.readiness import ReadinessChecker

logger = logging.getLogger(__name__)


class UpgradeSequencer:
    """Orchestrates the controller and compute phases."""

    def __init__(
        self,
        inventory: NodeInventory,
        store: UpgradeProgressStore,
        readiness: ReadinessChecker,
        adapter: PacemakerAdapter,
        node_step_factory,
        cancelled: Optional[threading.Event] = None,
    ):
        """
        Args:
            inventory: Node inventory
            store: Durable progress store
            readiness: Readiness checker consulted when the upgrade starts
            adapter: Cluster resource manager adapter
            node_step_factory: Callable(checkpoint, cancelled) -> NodeUpgradeStep
            cancelled: Shared cancellation flag
        """
        self.inventory = inventory
        self.store = store
        self.readiness = readiness
        self.adapter = adapter
        self.cancelled = cancelled or threading.Event()
        self.node_step: NodeUpgradeStep = node_step_factory(
            self._checkpoint, self.cancelled
        )
        self.progress = UpgradeProgress()
        self._stored_phase: Optional[Phase] = None

    def status(self) -> UpgradeProgress:
        return self.store.load()

    def _checkpoint(self, message: str) -> None:
        """Persist the current progress as a successful transition."""
        self.progress.last_message = message
        self.progress.failed = False
        logger.info(message)
        self.store.save(self.progress, expected_phase=self._stored_phase)
        self._stored_phase = self.progress.phase

    def _enter(self, phase: Phase, message: str) -> None:
        self.progress.phase = phase
        self.progress.current_node = None
        self.progress.current_step = None
        self.progress.coordinator = None
        self._checkpoint(message)

    def _fail(self, message: str) -> None:
        logger.error(message)
        self.progress.failed = True
        self.progress.last_message = message
        if self.progress.current_node:
            self.progress.node_states[self.progress.current_node] = NodeState.FAILED
        try:
            self.store.save(self.progress, expected_phase=self._stored_phase)
        except ConcurrentUpdateError as e:
            logger.error(f"Could not record failure: {e}")

    def advance(self) -> bool:
        """
        Run or resume the upgrade until it completes or a step fails.

        Returns:
            True if all phases are complete, False if blocked or failed
            (the reason is in the stored last_message)
        """
        self.cancelled.clear()
        self.progress = self.store.load()
        self._stored_phase = self.progress.phase

        if self.progress.phase == Phase.DONE:
            logger.info("Upgrade of all nodes has already been completed")
            return True

        if self.progress.failed:
            logger.info(
                f"Retrying after failure in phase {self.progress.phase.value}: "
                f"{self.progress.last_message}"
            )

        try:
            if self.progress.phase == Phase.NOT_STARTED:
                self._start()
            if self.progress.phase == Phase.CONTROLLERS:
                self._upgrade_controllers()
                self._enter(Phase.COMPUTES, "Upgrade of controller nodes finished")
            if self.progress.phase == Phase.COMPUTES:
                self._upgrade_computes()
                self._enter(Phase.DONE, "Upgrade of all nodes finished")
        except ConcurrentUpdateError as e:
            logger.error(str(e))
            return False
        except UpgradeError as e:
            self._fail(str(e))
            return False
        except Exception as e:
            logger.exception(f"Unexpected error during upgrade: {e}")
            self._fail(f"Unexpected error during upgrade: {e}")
            return False
        return True

    def _start(self) -> None:
        report = self.readiness.evaluate()
        if report.recommended_method == UpgradeMethod.NONE:
            raise PreconditionFailure(self.readiness.failed_required(report))
        self._enter(
            Phase.CONTROLLERS,
            f"Starting {report.recommended_method.value} upgrade of controller nodes",
        )

    def _upgrade_controllers(self) -> None:
        for group in self.inventory.ha_groups():
            while any(
                self.progress.node_state(m.name) != NodeState.UPGRADED
                for m in group.members
            ):
                self.node_step.upgrade_group_member(group, self.progress)
            self._verify_leader(group)

        for node in self.inventory.standalone_controllers():
            if self.progress.node_state(node.name) != NodeState.UPGRADED:
                self.node_step.upgrade_standalone(node, self.progress)

    def _verify_leader(self, group) -> None:
        leader_name = self.progress.group_leaders.get(group.name)
        if leader_name is None:
            raise RoleResolutionError(group.name, "no upgraded leader was recorded")
        leader = self.inventory.get(leader_name)
        if not self.adapter.is_leader(leader):
            raise RoleResolutionError(
                group.name, f"{leader_name} does not report itself as founder"
            )

    def _upgrade_computes(self) -> None:
        # Compute nodes mirror the standalone controller states for now
        for node in self.inventory.computes():
            if self.progress.node_state(node.name) != NodeState.UPGRADED:
                self.node_step.upgrade_standalone(node, self.progress)

    def prepare_services(self) -> None:
        """
        Prepare every node and stop non-essential services.

        For each HA group the shutdown is started from one member only.

        Raises:
            RemoteStepFailure: if a node could not be prepared or stopped
        """
        for node in self.inventory.cluster_nodes():
            self.adapter.prepare_node(node)

        progress = self.store.load()
        for group in self.inventory.ha_groups():
            founder = progress.group_leaders.get(group.name) or group.members[0].name
            self.adapter.shutdown_services(self.inventory.get(founder))

        for node in self.inventory.cluster_nodes():
            if not node.is_clustered:
                self.adapter.shutdown_services(node)

    def cancel(self) -> List[RevertError]:
        """
        Stop the upgrade and revert pending-upgrade markers on all nodes.

        Best effort: every node is attempted and failures are returned, not
        raised.
        """
        self.cancelled.set()
        failures: List[RevertError] = []

        for node in self.inventory.cluster_nodes():
            try:
                outcome = self.adapter.revert_node(node)
            except Exception as e:
                failures.append(RevertError(node.name, str(e)))
                continue
            if not outcome.succeeded:
                failures.append(RevertError(node.name, outcome.describe()))

        for failure in failures:
            logger.error(str(failure))

        progress = self.store.load()
        progress.phase = Phase.NOT_STARTED
        progress.current_node = None
        progress.current_step = None
        progress.coordinator = None
        progress.failed = False
        progress.node_states = {
            name: state
            for name, state in progress.node_states.items()
            if state == NodeState.UPGRADED
        }
        # A group whose leader was reverted starts over from the replica roles
        for group_name, leader in list(progress.group_leaders.items()):
            if progress.node_state(leader) != NodeState.UPGRADED:
                del progress.group_leaders[group_name]
                if group_name in progress.cleaned_groups:
                    progress.cleaned_groups.remove(group_name)
        progress.last_message = "Upgrade cancelled"
        if failures:
            progress.last_message += (
                f"; {len(failures)} node(s) could not be reverted: "
                + ", ".join(f.node for f in failures)
            )
        try:
            self.store.save(progress)
        except ConcurrentUpdateError as e:
            failures.append(RevertError("progress", str(e)))
        logger.info(progress.last_message)
        return failures
