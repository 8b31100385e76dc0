"""
Rolling upgrade orchestrator for HA controller/compute clusters.
"""

from cluster_upgrade.clients import NodeAgentClient, RemoteStepClient, SshStepClient
from cluster_upgrade.config import NodeCommands, UpgraderConfig
from cluster_upgrade.inventory import NodeInventory
from cluster_upgrade.log_utils import setup_logging
from cluster_upgrade.models import (
    CheckResult,
    Detail,
    HaGroup,
    Node,
    ReadinessReport,
    StepOutcome,
    UpgradeProgress,
)
from cluster_upgrade.progress import InMemoryProgressStore, JsonProgressStore
from cluster_upgrade.readiness import ReadinessChecker
from cluster_upgrade.roles import ReplicaRoleResolver
from cluster_upgrade.sequencer import UpgradeSequencer
from cluster_upgrade.upgrade_api import UpgradeApi

__all__ = [
    "NodeAgentClient",
    "RemoteStepClient",
    "SshStepClient",
    "NodeCommands",
    "UpgraderConfig",
    "NodeInventory",
    "setup_logging",
    "CheckResult",
    "Detail",
    "HaGroup",
    "Node",
    "ReadinessReport",
    "StepOutcome",
    "UpgradeProgress",
    "InMemoryProgressStore",
    "JsonProgressStore",
    "ReadinessChecker",
    "ReplicaRoleResolver",
    "UpgradeSequencer",
    "UpgradeApi",
]
