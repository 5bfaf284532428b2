"""
Node identity and the per-node bootstrap state machine.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .trust import InstallResult, RetrievalCampaign, StopReason, TrustBundle


class NodeRole(Enum):
    AUTHORITY = "authority"
    FOLLOWER = "follower"

    @classmethod
    def parse(cls, value: str) -> 'NodeRole':
        """Accept protocol names as well as cluster role names (master/data)."""
        aliases = {
            "authority": cls.AUTHORITY,
            "master": cls.AUTHORITY,
            "follower": cls.FOLLOWER,
            "data": cls.FOLLOWER,
        }
        role = aliases.get((value or "").strip().lower())
        if role is None:
            raise ValueError(f"Invalid role: {value}. Use 'master' or 'data'.")
        return role


@dataclass(frozen=True)
class NodeIdentity:
    """Selects which side of the protocol a process runs. Never mutated."""
    role: NodeRole
    node_name: str
    cluster_name: str

    def __post_init__(self):
        if not self.node_name:
            raise ValueError("node_name is required")
        if not self.cluster_name:
            raise ValueError("cluster_name is required")

    @property
    def is_authority(self) -> bool:
        return self.role == NodeRole.AUTHORITY


class NodeState(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    AWAITING_SOURCE = "awaiting_source"
    SERVING = "serving"
    STOPPED = "stopped"
    RETRIEVING = "retrieving"
    RETRIEVED = "retrieved"
    INSTALLED = "installed"
    FAILED = "failed"


_TRANSITIONS: Dict[NodeState, FrozenSet[NodeState]] = {
    NodeState.IDLE: frozenset({NodeState.GENERATING, NodeState.AWAITING_SOURCE}),
    NodeState.GENERATING: frozenset({NodeState.SERVING}),
    NodeState.SERVING: frozenset({NodeState.STOPPED}),
    NodeState.STOPPED: frozenset({NodeState.INSTALLED}),
    NodeState.AWAITING_SOURCE: frozenset({NodeState.RETRIEVING}),
    NodeState.RETRIEVING: frozenset({NodeState.RETRIEVED}),
    NodeState.RETRIEVED: frozenset({NodeState.INSTALLED}),
    NodeState.INSTALLED: frozenset(),
    NodeState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({NodeState.INSTALLED, NodeState.FAILED})


class NodeStateMachine:
    """Tracks a node's progress through the trust bootstrap."""

    def __init__(self):
        self.state = NodeState.IDLE
        self.history: List[NodeState] = [NodeState.IDLE]

    def advance(self, new_state: NodeState) -> NodeState:
        if new_state == NodeState.FAILED:
            return self.fail()
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        return new_state

    def fail(self) -> NodeState:
        # Any non-terminal state may fail.
        if self.state not in TERMINAL_STATES:
            self.state = NodeState.FAILED
            self.history.append(NodeState.FAILED)
        return self.state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class BootstrapResult:
    """Summary of one node's completed trust bootstrap."""
    identity: NodeIdentity
    state: NodeState
    bundle: Optional[TrustBundle] = None
    install: Optional[InstallResult] = None
    campaign: Optional[RetrievalCampaign] = None
    stop_reason: Optional[StopReason] = None
    fetch_count: int = 0
    history: List[NodeState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == NodeState.INSTALLED
