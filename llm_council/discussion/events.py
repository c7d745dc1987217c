"""Events yielded by a running discussion."""

from dataclasses import dataclass
from enum import Enum

from llm_council.discussion.consensus import ConsensusResult
from llm_council.discussion.state import CompletionReason, DiscussionMessage, DiscussionState, UserIntervention


class DiscussionEventType(str, Enum):
    DISCUSSION_START = "discussion_start"
    USER_INTERVENTION = "user_intervention"
    ROUND_START = "round_start"
    MESSAGE_COMPLETE = "message_complete"
    CONSENSUS_CHECK = "consensus_check"
    ROUND_COMPLETE = "round_complete"
    DISCUSSION_COMPLETE = "discussion_complete"
    DISCUSSION_TERMINATED = "discussion_terminated"
    ERROR = "error"


@dataclass
class DiscussionEvent:
    type: DiscussionEventType
    round: int | None = None
    speaker_id: str | None = None
    message: DiscussionMessage | None = None
    intervention: UserIntervention | None = None
    consensus: ConsensusResult | None = None
    reason: CompletionReason | None = None
    error: str | None = None
    state: DiscussionState | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (
            DiscussionEventType.DISCUSSION_COMPLETE,
            DiscussionEventType.DISCUSSION_TERMINATED,
        )
