"""
Unit tests for the per-node upgrade state machine.
"""

import threading
import unittest

from cluster_upgrade.cluster import PacemakerAdapter
from cluster_upgrade.config import UpgraderConfig
from cluster_upgrade.errors import RemoteStepFailure, UpgradeCancelled
from cluster_upgrade.models import NodeState, StepName, UpgradeProgress
from cluster_upgrade.node_upgrade import NodeUpgradeStep
from cluster_upgrade.progress import InMemoryProgressStore
from cluster_upgrade.roles import ReplicaRoleResolver

from fakes import COMMANDS, failed, timed_out, two_node_cluster


class NodeUpgradeTestCase(unittest.TestCase):
    def setUp(self):
        self.client, self.inventory = two_node_cluster(master="node1")
        self.config = UpgraderConfig()
        self.store = InMemoryProgressStore()
        self.progress = UpgradeProgress()
        self.messages = []
        self.cancelled = threading.Event()
        self.adapter = PacemakerAdapter(self.client, self.inventory)
        self.step = NodeUpgradeStep(
            self.client,
            self.adapter,
            ReplicaRoleResolver(self.client, COMMANDS.role_probe),
            self.inventory,
            self.config,
            self._checkpoint,
            self.cancelled,
        )
        (self.group,) = self.inventory.ha_groups()

    def _checkpoint(self, message):
        self.messages.append(message)
        self.store.save(self.progress)


class TestGroupRound(NodeUpgradeTestCase):
    def test_first_round_upgrades_slave_and_hands_over_leadership(self):
        """The slave is upgraded first and becomes the group founder."""
        target = self.step.upgrade_group_member(self.group, self.progress)

        self.assertEqual(target.name, "node2")
        self.assertEqual(self.progress.group_leaders, {"data": "node2"})
        self.assertEqual(self.progress.node_state("node2"), NodeState.UPGRADED)
        self.assertEqual(self.progress.node_state("node1"), NodeState.PENDING)
        self.assertIsNone(self.progress.current_node)
        self.assertIsNone(self.progress.current_step)
        self.assertEqual(self.progress.cleaned_groups, ["data"])

        issued = [(n, c) for n, c, _ in self.client.calls]
        self.assertEqual(
            issued,
            [
                ("node1", COMMANDS.role_probe),
                ("node2", COMMANDS.role_probe),
                ("node2", COMMANDS.upgrade),
                ("node2", COMMANDS.leader_query),
                ("node2", COMMANDS.set_leader),
                ("node1", "crm node attribute node2 delete pre-upgrade"),
                ("node1", COMMANDS.delete_resources),
                ("node2", COMMANDS.post_upgrade),
            ],
        )

    def test_cleanup_uses_cleanup_timeout(self):
        self.step.upgrade_group_member(self.group, self.progress)

        (call,) = self.client.calls_to(COMMANDS.delete_resources)
        self.assertEqual(call[2], 300)

    def test_second_round_upgrades_former_master_from_new_leader(self):
        """After the handoff the former master is upgraded next."""
        self.step.upgrade_group_member(self.group, self.progress)
        self.client.calls.clear()

        target = self.step.upgrade_group_member(self.group, self.progress)

        self.assertEqual(target.name, "node1")
        self.assertEqual(self.progress.group_leaders, {"data": "node2"})
        issued = [(n, c) for n, c, _ in self.client.calls]
        self.assertEqual(
            issued,
            [
                ("node1", COMMANDS.upgrade),
                ("node2", "crm node attribute node1 delete pre-upgrade"),
                ("node1", COMMANDS.post_upgrade),
            ],
        )

    def test_each_state_is_checkpointed(self):
        self.step.upgrade_group_member(self.group, self.progress)

        # select plus one checkpoint per remaining state
        self.assertEqual(len(self.messages), 6)
        self.assertEqual(self.messages[0], "Starting the upgrade of node node2")
        self.assertEqual(self.messages[-1], "Node node2 has been upgraded")
        self.assertEqual(self.store.load().revision, 6)


class TestFaultInjection(NodeUpgradeTestCase):
    FAILURES = [
        (StepName.UPGRADE, COMMANDS.upgrade, "node2"),
        (StepName.PROMOTE, COMMANDS.set_leader, "node2"),
        (StepName.CLEAR_PENDING_FLAG, "crm node attribute", "node1"),
        (StepName.CLEANUP_RESOURCES, COMMANDS.delete_resources, "node1"),
        (StepName.POST_UPGRADE, COMMANDS.post_upgrade, "node2"),
    ]

    def test_no_remote_call_after_failed_state(self):
        for step, command, node in self.FAILURES:
            with self.subTest(step=step.value):
                self.setUp()
                self.client.on(command, node=node, outcome=failed(2))

                with self.assertRaises(RemoteStepFailure) as ctx:
                    self.step.upgrade_group_member(self.group, self.progress)

                self.assertEqual(ctx.exception.step, step)
                last_node, last_command, _ = self.client.calls[-1]
                self.assertEqual(last_node, node)
                self.assertIn(command, last_command)
                self.assertEqual(self.progress.current_step, step)
                self.assertEqual(self.progress.current_node, "node2")

    def test_cleanup_timeout_surfaces_log_path(self):
        self.client.on(COMMANDS.delete_resources, outcome=timed_out())

        with self.assertRaises(RemoteStepFailure) as ctx:
            self.step.upgrade_group_member(self.group, self.progress)

        self.assertEqual(ctx.exception.log_path, "/var/log/crowbar/node-upgrade.log")
        self.assertIn("/var/log/crowbar/node-upgrade.log", str(ctx.exception))
        self.assertIn("node1", str(ctx.exception))
        self.assertNotIn("data", self.progress.cleaned_groups)

    def test_resume_continues_at_failed_state(self):
        self.client.on(COMMANDS.delete_resources, outcome=failed(1), times=1)
        with self.assertRaises(RemoteStepFailure):
            self.step.upgrade_group_member(self.group, self.progress)
        self.client.calls.clear()

        target = self.step.upgrade_group_member(self.group, self.progress)

        self.assertEqual(target.name, "node2")
        self.assertEqual(self.client.calls[0][1], COMMANDS.delete_resources)
        self.assertEqual(self.client.calls_to(COMMANDS.role_probe), [])
        self.assertEqual(self.client.calls_to(COMMANDS.upgrade), [])

    def test_cancellation_is_checked_between_states(self):
        self.cancelled.set()

        with self.assertRaises(UpgradeCancelled):
            self.step.upgrade_group_member(self.group, self.progress)

        self.assertEqual(self.client.calls, [])


class TestPromote(NodeUpgradeTestCase):
    def test_promote_twice_is_a_no_op_the_second_time(self):
        node2 = self.inventory.get("node2")

        self.step.promote(node2, self.group, self.progress)
        self.client.calls.clear()
        first = self.step.promote(node2, self.group, self.progress)
        first_calls = list(self.client.calls)
        self.client.calls.clear()
        second = self.step.promote(node2, self.group, self.progress)

        self.assertEqual(first, second)
        self.assertEqual(first_calls, self.client.calls)
        self.assertEqual(self.client.calls_to(COMMANDS.set_leader), [])
        self.assertEqual(self.progress.group_leaders, {"data": "node2"})


class TestSelect(NodeUpgradeTestCase):
    def test_leader_that_is_not_upgraded_is_ignored(self):
        """A leader reverted by cancel does not turn the master into the target."""
        self.progress.group_leaders["data"] = "node2"

        target = self.step.select(self.group, self.progress)

        self.assertEqual(target.name, "node2")
        self.assertEqual(self.progress.coordinator, "node1")
        self.assertEqual(len(self.client.calls_to(COMMANDS.role_probe)), 2)
        self.assertEqual(self.progress.group_leaders, {})

    def test_upgraded_leader_coordinates_the_next_round(self):
        self.progress.group_leaders["data"] = "node2"
        self.progress.node_states["node2"] = NodeState.UPGRADED

        target = self.step.select(self.group, self.progress)

        self.assertEqual(target.name, "node1")
        self.assertEqual(self.progress.coordinator, "node2")
        self.assertEqual(self.client.calls_to(COMMANDS.role_probe), [])


class TestStandalone(NodeUpgradeTestCase):
    def test_compute_runs_node_local_states_only(self):
        node3 = self.inventory.get("node3")

        self.step.upgrade_standalone(node3, self.progress)

        issued = [(n, c) for n, c, _ in self.client.calls]
        self.assertEqual(
            issued, [("node3", COMMANDS.upgrade), ("node3", COMMANDS.post_upgrade)]
        )
        self.assertEqual(self.progress.node_state("node3"), NodeState.UPGRADED)

    def test_resume_standalone_at_post_upgrade(self):
        node3 = self.inventory.get("node3")
        self.client.on(COMMANDS.post_upgrade, outcome=failed(1), times=1)
        with self.assertRaises(RemoteStepFailure):
            self.step.upgrade_standalone(node3, self.progress)
        self.client.calls.clear()

        self.step.upgrade_standalone(node3, self.progress)

        self.assertEqual(
            [(n, c) for n, c, _ in self.client.calls],
            [("node3", COMMANDS.post_upgrade)],
        )


if __name__ == "__main__":
    unittest.main()
