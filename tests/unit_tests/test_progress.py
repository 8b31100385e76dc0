"""
Unit tests for the progress stores.
"""

import json
import os
import tempfile
import unittest

from cluster_upgrade.errors import ConcurrentUpdateError
from cluster_upgrade.models import NodeState, Phase, StepName, UpgradeProgress
from cluster_upgrade.progress import InMemoryProgressStore, JsonProgressStore


class StoreContract:
    """Behaviour shared by every progress store."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_fresh_store_is_not_started(self):
        progress = self.store.load()

        self.assertEqual(progress.phase, Phase.NOT_STARTED)
        self.assertEqual(progress.revision, 0)

    def test_save_and_load(self):
        progress = self.store.load()
        progress.phase = Phase.CONTROLLERS
        progress.current_node = "node2"
        progress.current_step = StepName.PROMOTE
        progress.node_states["node2"] = NodeState.UPGRADING

        self.store.save(progress, expected_phase=Phase.NOT_STARTED)

        loaded = self.store.load()
        self.assertEqual(loaded.phase, Phase.CONTROLLERS)
        self.assertEqual(loaded.current_step, StepName.PROMOTE)
        self.assertEqual(loaded.node_state("node2"), NodeState.UPGRADING)
        self.assertEqual(loaded.revision, 1)
        self.assertEqual(progress.revision, 1)
        self.assertIsNotNone(loaded.updated_at)

    def test_stale_revision_is_rejected(self):
        first = self.store.load()
        second = self.store.load()
        first.last_message = "first writer"
        self.store.save(first)

        second.last_message = "second writer"
        with self.assertRaises(ConcurrentUpdateError):
            self.store.save(second)

        self.assertEqual(self.store.load().last_message, "first writer")

    def test_unexpected_phase_is_rejected(self):
        progress = self.store.load()

        with self.assertRaises(ConcurrentUpdateError):
            self.store.save(progress, expected_phase=Phase.COMPUTES)

        self.assertEqual(self.store.load().revision, 0)

    def test_loaded_copy_is_detached(self):
        progress = self.store.load()
        progress.group_leaders["data"] = "node2"

        self.assertEqual(self.store.load().group_leaders, {})


class TestInMemoryProgressStore(StoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryProgressStore()

    def test_initial_record(self):
        store = InMemoryProgressStore(UpgradeProgress(phase=Phase.COMPUTES))

        self.assertEqual(store.load().phase, Phase.COMPUTES)


class TestJsonProgressStore(StoreContract, unittest.TestCase):
    def make_store(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = os.path.join(self._tmp.name, "state", "progress.json")
        return JsonProgressStore(self.path)

    def test_file_contents(self):
        progress = self.store.load()
        progress.phase = Phase.DONE
        self.store.save(progress)

        with open(self.path) as f:
            data = json.load(f)
        self.assertEqual(data["phase"], "done")
        self.assertEqual(data["revision"], 1)

    def test_no_temporary_files_left_behind(self):
        for _ in range(3):
            self.store.save(self.store.load())

        leftovers = [
            name
            for name in os.listdir(os.path.dirname(self.path))
            if name.endswith(".tmp")
        ]
        self.assertEqual(leftovers, [])

    def test_second_store_on_same_file_sees_writes(self):
        other = JsonProgressStore(self.path)
        progress = self.store.load()
        progress.cleaned_groups.append("data")
        self.store.save(progress)

        self.assertEqual(other.load().cleaned_groups, ["data"])
        with self.assertRaises(ConcurrentUpdateError):
            other.save(UpgradeProgress())


if __name__ == "__main__":
    unittest.main()
