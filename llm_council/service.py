"""Caller boundary: runs council, roundtable and discussion modes against stored conversations.

Each mode persists the user message before dispatch and the assistant
result after the run, and relays the engine's events unchanged.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import asdict

from config.config_loader import AppConfig
from llm_council.council import generate_title, sanitize_participants, stream_council, truncate_title
from llm_council.discussion.consensus import ConsensusDetector
from llm_council.discussion.events import DiscussionEvent, DiscussionEventType
from llm_council.discussion.orchestrator import DiscussionOrchestrator
from llm_council.discussion.state import (
    DiscussionConfig,
    DiscussionNotRunning,
    InterventionType,
    UserIntervention,
)
from llm_council.invoker import ModelInvoker
from llm_council.models import CouncilEvent, ParticipantConfig, RoundtableEvent
from llm_council.roles import roles_from_config
from llm_council.roundtable import participants_from_models, stream_roundtable
from llm_council.sessions import DiscussionSessions
from llm_council.storage import Conversation, ConversationMessage, ConversationNotFound, ConversationStore

logger = logging.getLogger(__name__)


class CouncilService:
    def __init__(
        self,
        config: AppConfig,
        invoker: ModelInvoker,
        store: ConversationStore,
        sessions: DiscussionSessions | None = None,
    ) -> None:
        self.config = config
        self.invoker = invoker
        self.store = store
        self.sessions = sessions or DiscussionSessions(self._new_orchestrator)

    def _new_orchestrator(self, config: DiscussionConfig, discussion_id: str) -> DiscussionOrchestrator:
        consensus = self.config.consensus
        detector = ConsensusDetector(
            self.invoker,
            mode=consensus.mode,
            strategies=consensus.strategies,
            threshold=config.consensus_threshold,
            judge_model=consensus.judge_model,
            embedding_model=consensus.embedding_model,
            embedding_threshold=consensus.embedding_threshold,
        )
        return DiscussionOrchestrator(
            config,
            self.invoker,
            detector=detector,
            history_window=self.config.discussion.history_window,
            min_messages_for_consensus=consensus.min_messages,
            turn_timeout_sec=self.config.discussion.turn_timeout_sec,
            discussion_id=discussion_id,
        )

    def create_conversation(self, conversation_id: str | None = None) -> Conversation:
        return self.store.create(conversation_id or uuid.uuid4().hex)

    def _open(self, conversation_id: str, mode: str) -> Conversation:
        conversation = self.store.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        if conversation.mode is None:
            conversation.mode = mode
            self.store.save(conversation)
        return conversation

    # ---- council ---------------------------------------------------------

    async def council_message(
        self,
        conversation_id: str,
        content: str,
        participants: list[ParticipantConfig] | None = None,
        chairman: str | None = None,
    ) -> AsyncIterator[CouncilEvent]:
        """Run the council on a new user message.

        Raises:
            ConversationNotFound: Unknown conversation id.
            CouncilConfigError: No usable participant (before anything is stored).
        """
        conversation = self._open(conversation_id, "council")
        participants = sanitize_participants(participants, self.config.council.models)
        is_first = not conversation.messages
        self.store.append_message(conversation_id, ConversationMessage(role="user", content=content))

        title_task = (
            asyncio.create_task(generate_title(self.invoker, content, self.config.council.title_model))
            if is_first else None
        )

        assistant = ConversationMessage(role="assistant", metadata={})
        error_event: CouncilEvent | None = None
        try:
            async for event in stream_council(
                self.invoker,
                content,
                participants,
                chairman=self.config.council.chairman,
                chairman_override=chairman,
                timeout_sec=self.config.council.timeout_sec,
            ):
                if event.type == "stage1_complete":
                    assistant.stage1 = [asdict(r) for r in event.data]
                elif event.type == "stage2_complete":
                    assistant.stage2 = [asdict(r) for r in event.data]
                    assistant.metadata = {
                        "label_to_model": event.label_to_model,
                        "aggregate_rankings": [asdict(a) for a in event.aggregate_rankings],
                    }
                elif event.type == "stage3_complete":
                    assistant.stage3 = asdict(event.data)
                elif event.type == "error":
                    assistant.stage3 = asdict(event.data)
                    error_event = event
                    break
                if event.type != "complete":
                    yield event

            self.store.append_message(conversation_id, assistant)

            if title_task is not None:
                title = await title_task
                self.store.update_title(conversation_id, title)
                yield CouncilEvent(type="title_complete", data={"title": title})

            yield error_event or CouncilEvent(type="complete")
        finally:
            if title_task is not None and not title_task.done():
                title_task.cancel()

    # ---- roundtable ------------------------------------------------------

    async def roundtable_message(
        self,
        conversation_id: str,
        content: str,
        participants: list[ParticipantConfig] | None = None,
    ) -> AsyncIterator[RoundtableEvent]:
        """One roundtable session answering a new user message."""
        conversation = self._open(conversation_id, "roundtable")
        speakers = participants_from_models(sanitize_participants(participants, self.config.council.models))
        is_first = not conversation.messages

        user_message = ConversationMessage(role="user", content=content)
        self.store.append_message(conversation_id, user_message)
        history = [*conversation.messages, user_message]

        async for event in stream_roundtable(
            self.invoker, history, speakers, timeout_sec=self.config.council.timeout_sec
        ):
            if event.type == "roundtable_complete" and event.turns:
                self.store.append_message(
                    conversation_id,
                    ConversationMessage(role="assistant", roundtable_turns=event.turns),
                )
            yield event

        if is_first:
            title = await generate_title(self.invoker, content, self.config.council.title_model)
            self.store.update_title(conversation_id, title)
            yield RoundtableEvent(type="title_complete", message=title)

    # ---- discussion ------------------------------------------------------

    async def run_discussion(
        self,
        conversation_id: str,
        topic: str,
        role_ids: list[str] | None = None,
        max_rounds: int | None = None,
        consensus_threshold: float | None = None,
    ) -> AsyncIterator[DiscussionEvent]:
        """Run a discussion to a terminal state, persisting interventions and the final state.

        The live orchestrator is registered under the conversation id for the
        duration of the run so intervene_discussion/terminate_discussion can
        reach it.

        Raises:
            ConversationNotFound: Unknown conversation id.
            ValueError: Invalid roles or discussion parameters.
        """
        conversation = self._open(conversation_id, "discussion")
        defaults = self.config.discussion
        config = DiscussionConfig(
            topic=topic,
            roles=roles_from_config(defaults.roles, role_ids),
            max_rounds=max_rounds or defaults.max_rounds,
            consensus_threshold=(
                consensus_threshold if consensus_threshold is not None else defaults.consensus_threshold
            ),
        )
        orchestrator = self.sessions.create(conversation_id, config)

        self.store.append_message(conversation_id, ConversationMessage(role="user", content=topic))
        if not conversation.messages:
            self.store.update_title(conversation_id, truncate_title(topic))

        try:
            async for event in orchestrator.start():
                if event.type is DiscussionEventType.USER_INTERVENTION:
                    self.store.append_message(
                        conversation_id,
                        ConversationMessage(
                            role="user",
                            content=event.intervention.content,
                            is_intervention=True,
                            intervention_type=event.intervention.type.value,
                        ),
                    )
                yield event
        finally:
            state = orchestrator.get_state()
            self.store.append_message(
                conversation_id,
                ConversationMessage(role="assistant", discussion_state=state.to_dict()),
            )
            self.sessions.remove(conversation_id)
            logger.info(
                "Discussion %s stored: %s after %d messages",
                conversation_id, state.status.value, len(state.messages),
            )

    def intervene_discussion(
        self, conversation_id: str, type: InterventionType | str, content: str
    ) -> UserIntervention:
        """Raises DiscussionNotRunning when no live discussion has this id."""
        orchestrator = self.sessions.get(conversation_id)
        if orchestrator is None:
            raise DiscussionNotRunning(f"No running discussion for conversation {conversation_id}")
        return orchestrator.intervene(type, content)

    def terminate_discussion(self, conversation_id: str) -> bool:
        orchestrator = self.sessions.get(conversation_id)
        if orchestrator is None:
            return False
        return orchestrator.terminate()
