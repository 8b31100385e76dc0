"""
Data models for the cluster upgrade orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Phase(str, Enum):
    """Top-level upgrade phases, in execution order."""

    NOT_STARTED = "not_started"
    CONTROLLERS = "controllers"
    COMPUTES = "computes"
    DONE = "done"


class NodeState(str, Enum):
    """Lifecycle tag of a node during the upgrade."""

    PENDING = "pending-upgrade"
    UPGRADING = "upgrading"
    UPGRADED = "upgraded"
    FAILED = "failed"


class UpgradeMethod(str, Enum):
    """Recommended upgrade strategy."""

    NONE = "none"
    NON_DISRUPTIVE = "non-disruptive"
    DISRUPTIVE = "disruptive"


class StepName(str, Enum):
    """States of the per-node upgrade state machine."""

    SELECT = "select"
    UPGRADE = "upgrade"
    PROMOTE = "promote"
    CLEAR_PENDING_FLAG = "clear_pending_flag"
    CLEANUP_RESOURCES = "cleanup_resources"
    POST_UPGRADE = "post_upgrade"


# Clustered controllers walk every state; standalone nodes only the node-local ones.
CONTROLLER_STEPS = (
    StepName.SELECT,
    StepName.UPGRADE,
    StepName.PROMOTE,
    StepName.CLEAR_PENDING_FLAG,
    StepName.CLEANUP_RESOURCES,
    StepName.POST_UPGRADE,
)
STANDALONE_STEPS = (StepName.UPGRADE, StepName.POST_UPGRADE)


class FailureKind(str, Enum):
    """Why a remote step did not succeed."""

    EXIT = "exit"
    TIMEOUT = "timeout"
    CONNECTION = "connection"


@dataclass
class Node:
    """A cluster member taking part in the upgrade."""

    name: str
    address: str
    roles: List[str] = field(default_factory=list)
    ha_group: Optional[str] = None
    state: NodeState = NodeState.PENDING

    @property
    def is_controller(self) -> bool:
        return "controller" in self.roles

    @property
    def is_compute(self) -> bool:
        return "compute" in self.roles

    @property
    def is_clustered(self) -> bool:
        return self.ha_group is not None


@dataclass
class HaGroup:
    """Nodes sharing a replicated service under the cluster resource manager."""

    name: str
    members: List[Node] = field(default_factory=list)

    def member_names(self) -> List[str]:
        return [n.name for n in self.members]


@dataclass(frozen=True)
class Detail:
    """One problem reported by a health check."""

    code: str
    data: Any
    help: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "data": self.data, "help": self.help}


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single readiness check."""

    id: str
    required: bool
    passed: bool
    errors: List[Detail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "required": self.required,
            "passed": self.passed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class ReadinessReport:
    """Aggregated readiness checks plus the derived upgrade method."""

    checks: Dict[str, CheckResult]
    recommended_method: UpgradeMethod

    def to_dict(self) -> Dict[str, Any]:
        return {check_id: c.to_dict() for check_id, c in self.checks.items()}


@dataclass
class StepOutcome:
    """Result of one remote command invocation."""

    succeeded: bool
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    failure: Optional[FailureKind] = None

    def describe(self) -> str:
        """Short human-readable summary for logs and status messages."""
        if self.succeeded:
            return "succeeded"
        if self.failure == FailureKind.TIMEOUT:
            return f"timed out ({self.error or 'no output'})"
        if self.failure == FailureKind.CONNECTION:
            return f"connection failed ({self.error or 'unreachable'})"
        return f"exited with code {self.exit_code}"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UpgradeProgress:
    """Durable resume point of the rolling upgrade."""

    phase: Phase = Phase.NOT_STARTED
    current_node: Optional[str] = None
    current_step: Optional[StepName] = None
    last_message: str = ""
    failed: bool = False
    node_states: Dict[str, NodeState] = field(default_factory=dict)
    coordinator: Optional[str] = None
    group_leaders: Dict[str, str] = field(default_factory=dict)
    cleaned_groups: List[str] = field(default_factory=list)
    revision: int = 0
    updated_at: Optional[str] = None

    def node_state(self, name: str) -> NodeState:
        return self.node_states.get(name, NodeState.PENDING)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return {
            "phase": self.phase.value,
            "current_node": self.current_node,
            "current_step": self.current_step.value if self.current_step else None,
            "last_message": self.last_message,
            "failed": self.failed,
            "node_states": {k: v.value for k, v in self.node_states.items()},
            "coordinator": self.coordinator,
            "group_leaders": dict(self.group_leaders),
            "cleaned_groups": list(self.cleaned_groups),
            "revision": self.revision,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpgradeProgress":
        step = data.get("current_step")
        return cls(
            phase=Phase(data.get("phase", Phase.NOT_STARTED.value)),
            current_node=data.get("current_node"),
            current_step=StepName(step) if step else None,
            last_message=data.get("last_message", ""),
            failed=bool(data.get("failed", False)),
            node_states={
                k: NodeState(v) for k, v in (data.get("node_states") or {}).items()
            },
            coordinator=data.get("coordinator"),
            group_leaders=dict(data.get("group_leaders") or {}),
            cleaned_groups=list(data.get("cleaned_groups") or []),
            revision=int(data.get("revision", 0)),
            updated_at=data.get("updated_at"),
        )
