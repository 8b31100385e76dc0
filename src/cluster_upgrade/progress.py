"""
Durable storage of upgrade progress, the resume point after a restart.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Optional

from cluster_upgrade.errors import ConcurrentUpdateError
from cluster_upgrade.models import Phase, UpgradeProgress

logger = logging.getLogger(__name__)


class UpgradeProgressStore:
    """Interface of progress stores."""

    def load(self) -> UpgradeProgress:
        raise NotImplementedError

    def save(
        self, progress: UpgradeProgress, expected_phase: Optional[Phase] = None
    ) -> None:
        """
        Persist progress.

        The stored revision must equal progress.revision (and the stored phase
        must equal expected_phase when given), otherwise another orchestrator
        wrote in between and ConcurrentUpdateError is raised. On success the
        revision of progress is incremented.
        """
        raise NotImplementedError

    @staticmethod
    def _verify(
        stored: UpgradeProgress,
        progress: UpgradeProgress,
        expected_phase: Optional[Phase],
    ) -> None:
        if stored.revision != progress.revision:
            raise ConcurrentUpdateError(
                f"Upgrade progress changed underneath us (stored revision {stored.revision}, "
                f"expected {progress.revision}); is another orchestrator running?"
            )
        if expected_phase is not None and stored.phase != expected_phase:
            raise ConcurrentUpdateError(
                f"Stored phase is {stored.phase.value}, expected {expected_phase.value}"
            )


class InMemoryProgressStore(UpgradeProgressStore):
    """Process-local store, used in tests."""

    def __init__(self, initial: Optional[UpgradeProgress] = None):
        self._lock = threading.Lock()
        self._progress = copy.deepcopy(initial) if initial else UpgradeProgress()

    def load(self) -> UpgradeProgress:
        with self._lock:
            return copy.deepcopy(self._progress)

    def save(
        self, progress: UpgradeProgress, expected_phase: Optional[Phase] = None
    ) -> None:
        with self._lock:
            self._verify(self._progress, progress, expected_phase)
            progress.revision += 1
            progress.touch()
            self._progress = copy.deepcopy(progress)


class JsonProgressStore(UpgradeProgressStore):
    """
    Stores progress as a JSON file.

    Writes go to a temporary file in the same directory which is then
    renamed over the old one, so readers see either the old or the new
    record. Writers are serialised with an flock on a sidecar lock file.
    """

    def __init__(self, path: str):
        self.path = path
        self.lock_path = f"{path}.lock"

    def _read(self) -> UpgradeProgress:
        try:
            with open(self.path) as f:
                return UpgradeProgress.from_dict(json.load(f))
        except FileNotFoundError:
            return UpgradeProgress()

    def load(self) -> UpgradeProgress:
        return self._read()

    @contextmanager
    def _writer_lock(self):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        with open(self.lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def save(
        self, progress: UpgradeProgress, expected_phase: Optional[Phase] = None
    ) -> None:
        with self._writer_lock():
            self._verify(self._read(), progress, expected_phase)
            progress.revision += 1
            progress.touch()

            directory = os.path.dirname(os.path.abspath(self.path))
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=".progress-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(progress.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                progress.revision -= 1
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        logger.debug(
            f"Saved progress rev {progress.revision}: phase={progress.phase.value}, "
            f"node={progress.current_node}, step={progress.current_step}"
        )
