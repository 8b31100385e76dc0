"""
Exception types raised by the upgrade orchestrator.
"""

from typing import Optional

from cluster_upgrade.models import StepName, StepOutcome


class UpgradeError(Exception):
    """Base class for orchestrator errors."""


class InventoryError(UpgradeError):
    """Raised when the node inventory cannot be loaded."""


class ProbeError(UpgradeError):
    """Raised when a health check could not run at all."""

    def __init__(self, check_id: str, reason: str):
        self.check_id = check_id
        self.reason = reason
        super().__init__(f"Health check '{check_id}' failed to run: {reason}")


class PreconditionFailure(UpgradeError):
    """Raised when a required readiness check does not pass."""

    def __init__(self, failed_checks):
        self.failed_checks = list(failed_checks)
        super().__init__(
            "Required upgrade checks failed: " + ", ".join(self.failed_checks)
        )


class RoleResolutionError(UpgradeError):
    """Raised when replica roles of an HA group cannot be determined."""

    def __init__(self, group: str, reason: str):
        self.group = group
        self.reason = reason
        super().__init__(f"Cannot resolve replica roles in group {group}: {reason}")


class RemoteStepFailure(UpgradeError):
    """Raised when a node action exits non-zero, times out or is unreachable."""

    def __init__(
        self,
        node: str,
        step: Optional[StepName],
        outcome: StepOutcome,
        log_path: Optional[str] = None,
        action: Optional[str] = None,
    ):
        self.node = node
        self.step = step
        self.outcome = outcome
        self.log_path = log_path
        what = action or (step.value if step else "remote command")
        message = f"{what} on node {node} {outcome.describe()}."
        if log_path:
            message += f" Check {log_path} on {node} for details."
        super().__init__(message)


class RevertError(UpgradeError):
    """A node could not be reverted during cancellation; reported, not raised."""

    def __init__(self, node: str, reason: str):
        self.node = node
        self.reason = reason
        super().__init__(f"Reverting node {node} failed: {reason}")


class ConcurrentUpdateError(UpgradeError):
    """Raised when the progress store was written by another orchestrator."""


class UpgradeCancelled(UpgradeError):
    """Raised between steps once cancellation has been requested."""
