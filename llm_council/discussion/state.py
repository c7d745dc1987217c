"""Discussion state: status machine, messages, interventions."""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum

from llm_council.roles import AgentRole


class DiscussionError(Exception):
    """Base class for discussion lifecycle errors."""


class InvalidTransition(DiscussionError):
    def __init__(self, current: "DiscussionStatus", target: "DiscussionStatus") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move discussion from {current.value} to {target.value}")


class DiscussionNotRunning(DiscussionError):
    """Raised when an operation needs a running discussion."""


class DiscussionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class CompletionReason(str, Enum):
    MAX_ROUNDS = "max_rounds"
    CONSENSUS = "consensus"


class InterventionType(str, Enum):
    REDIRECT = "redirect"
    CORRECTION = "correction"
    DEEP_DIVE = "deep_dive"
    TERMINATE = "terminate"


# Terminal states have no way out.
_TRANSITIONS: dict[DiscussionStatus, frozenset[DiscussionStatus]] = {
    DiscussionStatus.RUNNING: frozenset({DiscussionStatus.COMPLETED, DiscussionStatus.TERMINATED}),
    DiscussionStatus.COMPLETED: frozenset(),
    DiscussionStatus.TERMINATED: frozenset(),
}


def can_transition(current: DiscussionStatus, target: DiscussionStatus) -> bool:
    return target in _TRANSITIONS[current]


def transition(current: DiscussionStatus, target: DiscussionStatus) -> DiscussionStatus:
    """Return target if the move is legal.

    Raises:
        InvalidTransition: Otherwise.
    """
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    return target


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class DiscussionMessage:
    id: str
    round: int
    speaker_id: str
    speaker_name: str
    model_id: str
    content: str
    timestamp: float


@dataclass(frozen=True)
class UserIntervention:
    id: str
    type: InterventionType
    content: str
    inserted_at: int         # len(messages) when the intervention arrived
    timestamp: float


@dataclass
class DiscussionConfig:
    topic: str
    roles: list[AgentRole]
    max_rounds: int = 20
    consensus_threshold: float = 0.7

    def __post_init__(self) -> None:
        if not self.topic.strip():
            raise ValueError("Topic is required")
        if not self.roles:
            raise ValueError("A discussion needs at least one role")
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if not 0.0 <= self.consensus_threshold <= 1.0:
            raise ValueError("consensus_threshold must be between 0 and 1")


@dataclass
class DiscussionState:
    id: str
    config: DiscussionConfig
    current_round: int = 1
    current_speaker_index: int = 0
    messages: list[DiscussionMessage] = field(default_factory=list)
    status: DiscussionStatus = DiscussionStatus.RUNNING
    completion_reason: CompletionReason | None = None
    consensus_detected: bool = False
    interventions: list[UserIntervention] = field(default_factory=list)
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    completed_at: float | None = None

    @property
    def is_running(self) -> bool:
        return self.status is DiscussionStatus.RUNNING

    def to_dict(self) -> dict:
        """JSON-friendly snapshot; role bindings reduced to their model ids."""
        return {
            "id": self.id,
            "topic": self.config.topic,
            "roles": [
                {"id": r.id, "name": r.name, "model": r.model_id}
                for r in self.config.roles
            ],
            "max_rounds": self.config.max_rounds,
            "consensus_threshold": self.config.consensus_threshold,
            "current_round": self.current_round,
            "current_speaker_index": self.current_speaker_index,
            "messages": [asdict(m) for m in self.messages],
            "status": self.status.value,
            "completion_reason": self.completion_reason.value if self.completion_reason else None,
            "consensus_detected": self.consensus_detected,
            "interventions": [{**asdict(i), "type": i.type.value} for i in self.interventions],
            "error": self.error,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }
