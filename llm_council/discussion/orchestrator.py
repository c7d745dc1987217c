"""Discussion orchestrator: round-robin turns among role-bound models.

start() drives the discussion and yields DiscussionEvents. intervene() and
terminate() may be called from another thread or task while start() is
being consumed; all state changes go through one lock.
"""

import asyncio
import copy
import logging
import threading
import time
from collections.abc import AsyncIterator, Coroutine

from llm_council.discussion.consensus import ConsensusDetector
from llm_council.discussion.events import DiscussionEvent, DiscussionEventType
from llm_council.discussion.state import (
    CompletionReason,
    DiscussionConfig,
    DiscussionError,
    DiscussionMessage,
    DiscussionNotRunning,
    DiscussionState,
    DiscussionStatus,
    InterventionType,
    UserIntervention,
    new_id,
    transition,
)
from llm_council.invoker import ModelInvoker, ResolvedModel
from llm_council.models import ModelResponse
from llm_council.providers.base import ChatMessage
from llm_council.roles import AgentRole, build_role_prompt

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 10
MIN_MESSAGES_FOR_CONSENSUS = 6

OPENING_PROMPT = "The discussion is just starting. Please share your initial perspective on the topic."

INTERVENTION_LABELS = {
    InterventionType.REDIRECT: "Discussion Moderator",
    InterventionType.CORRECTION: "Fact Checker",
    InterventionType.DEEP_DIVE: "Discussion Moderator",
    InterventionType.TERMINATE: "System",
}

_CANCELLED = object()


class DiscussionOrchestrator:
    """Runs one discussion from start to a terminal state."""

    def __init__(
        self,
        config: DiscussionConfig,
        invoker: ModelInvoker,
        detector: ConsensusDetector | None = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        min_messages_for_consensus: int = MIN_MESSAGES_FOR_CONSENSUS,
        turn_timeout_sec: float | None = None,
        discussion_id: str | None = None,
    ) -> None:
        self.state = DiscussionState(id=discussion_id or new_id(), config=config)
        self._invoker = invoker
        self._detector = detector or ConsensusDetector(invoker, threshold=config.consensus_threshold)
        self._history_window = history_window
        self._min_messages = min_messages_for_consensus
        self._turn_timeout_sec = turn_timeout_sec

        self._lock = threading.Lock()
        self._started = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._current_task: asyncio.Task | None = None
        self._reported_interventions = 0

        # Bindings are resolved once; None marks a role nothing can serve.
        self._resolved: dict[str, ResolvedModel | None] = {
            role.id: invoker.resolve(role.binding, model_id=role.model_id) for role in config.roles
        }
        self._system_prompts = {
            role.id: build_role_prompt(role, config.topic, config.max_rounds) for role in config.roles
        }
        self._steering: dict[str, list[str]] = {}

    @property
    def id(self) -> str:
        return self.state.id

    # ---- control surface -------------------------------------------------

    def intervene(self, type: InterventionType | str, content: str) -> UserIntervention:
        """Record a user intervention and steer the role whose turn is next.

        Turn order and round count are unchanged. A terminate intervention is
        recorded first and then ends the discussion.

        Raises:
            DiscussionNotRunning: If the discussion is already over.
            ValueError: On an unknown intervention type.
        """
        kind = InterventionType(type)
        with self._lock:
            if not self.state.is_running:
                raise DiscussionNotRunning(
                    f"Discussion {self.state.id} is {self.state.status.value}, cannot intervene"
                )
            intervention = UserIntervention(
                id=new_id(),
                type=kind,
                content=content,
                inserted_at=len(self.state.messages),
                timestamp=time.time(),
            )
            self.state.interventions.append(intervention)
            role = self.state.config.roles[self.state.current_speaker_index]
            self._steering.setdefault(role.id, []).append(f"[{INTERVENTION_LABELS[kind]}]: {content}")

        logger.info("Intervention %s for %s: %s", kind.value, role.id, content)
        if kind is InterventionType.TERMINATE:
            self.terminate()
        return intervention

    def terminate(self) -> bool:
        """Stop the discussion and cancel the in-flight model call.

        Returns True when this call did the termination; repeated calls and
        calls on a completed discussion do nothing.
        """
        with self._lock:
            if not self.state.is_running:
                return False
            self.state.status = transition(self.state.status, DiscussionStatus.TERMINATED)
            self.state.completed_at = time.time()
            task = self._current_task
            loop = self._loop

        logger.info("Discussion %s terminated", self.state.id)
        if task is not None and not task.done() and loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(task.cancel)
        return True

    def get_state(self) -> DiscussionState:
        """Deep-copied snapshot, safe to read while the discussion runs."""
        with self._lock:
            return copy.deepcopy(self.state)

    def cleanup(self) -> None:
        """Terminate if still running and drop the model handles."""
        self.terminate()
        with self._lock:
            self._resolved.clear()
            self._steering.clear()
            self._current_task = None

    # ---- event loop ------------------------------------------------------

    async def start(self) -> AsyncIterator[DiscussionEvent]:
        """Run the discussion, yielding events until it reaches a terminal state.

        Raises:
            DiscussionError: If called a second time on the same instance.
        """
        with self._lock:
            if self._started:
                raise DiscussionError(f"Discussion {self.state.id} has already been started")
            self._started = True
            self._loop = asyncio.get_running_loop()

        logger.info(
            "Discussion %s started: %d roles, max %d rounds",
            self.state.id, len(self.state.config.roles), self.state.config.max_rounds,
        )
        yield DiscussionEvent(type=DiscussionEventType.DISCUSSION_START, state=self.get_state())

        while True:
            for intervention in self._unreported_interventions():
                yield DiscussionEvent(type=DiscussionEventType.USER_INTERVENTION, intervention=intervention)

            if self._is_terminated():
                yield self._terminated_event()
                return

            if self.state.current_round > self.state.config.max_rounds:
                yield self._complete(CompletionReason.MAX_ROUNDS)
                return

            if len(self.state.messages) >= self._min_messages:
                messages = self.get_state().messages
                result = await self._run_cancellable(self._detector.detect(messages, self.state.config.topic))
                if result is _CANCELLED or self._is_terminated():
                    yield self._terminated_event()
                    return
                yield DiscussionEvent(
                    type=DiscussionEventType.CONSENSUS_CHECK,
                    round=self.state.current_round,
                    consensus=result,
                )
                if result.detected:
                    with self._lock:
                        self.state.consensus_detected = True
                    yield self._complete(CompletionReason.CONSENSUS)
                    return

            role = self.state.config.roles[self.state.current_speaker_index]
            resolved = self._resolved.get(role.id)
            if resolved is None:
                yield self._halt(f"No configured provider can serve model '{role.model_id}' for role '{role.id}'")
                return

            round_no = self.state.current_round
            yield DiscussionEvent(type=DiscussionEventType.ROUND_START, round=round_no, speaker_id=role.id)

            response = await self._run_cancellable(
                self._invoker.invoke_resolved(
                    resolved,
                    self._build_messages(role),
                    system_prompt=self._system_prompts[role.id],
                    timeout_sec=self._turn_timeout_sec,
                )
            )
            if response is _CANCELLED or self._is_terminated():
                yield self._terminated_event()
                return

            message = None
            if isinstance(response, ModelResponse):
                message = DiscussionMessage(
                    id=new_id(),
                    round=round_no,
                    speaker_id=role.id,
                    speaker_name=role.name,
                    model_id=role.model_id,
                    content=response.content,
                    timestamp=time.time(),
                )
            else:
                logger.warning("Turn failed for %s in round %d: %s", role.id, round_no, response)

            # Interventions sent while the turn event is handled steer the next speaker.
            with self._lock:
                if message is not None:
                    self.state.messages.append(message)
                self.state.current_speaker_index = (self.state.current_speaker_index + 1) % len(
                    self.state.config.roles
                )
                wrapped = self.state.current_speaker_index == 0
                if wrapped:
                    self.state.current_round += 1

            if message is not None:
                yield DiscussionEvent(
                    type=DiscussionEventType.MESSAGE_COMPLETE,
                    round=round_no,
                    speaker_id=role.id,
                    message=message,
                )
            else:
                yield DiscussionEvent(
                    type=DiscussionEventType.ERROR,
                    round=round_no,
                    speaker_id=role.id,
                    error=str(response),
                )
            if wrapped:
                logger.info("Discussion %s round %d complete", self.state.id, round_no)
                yield DiscussionEvent(type=DiscussionEventType.ROUND_COMPLETE, round=round_no)

    # ---- helpers ---------------------------------------------------------

    async def _run_cancellable(self, coro: Coroutine):
        """Run coro as the current task so terminate() can cancel it.

        Returns _CANCELLED when the task was cancelled by terminate().
        """
        with self._lock:
            if not self.state.is_running:
                coro.close()
                return _CANCELLED
            task = asyncio.ensure_future(coro)
            self._current_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._is_terminated() and not _current_task_cancelling():
                return _CANCELLED
            raise
        finally:
            with self._lock:
                if self._current_task is task:
                    self._current_task = None

    def _build_messages(self, role: AgentRole) -> list[ChatMessage]:
        with self._lock:
            recent = self.state.messages[-self._history_window:]
            steering = self._steering.pop(role.id, [])

        if not recent:
            prompt = OPENING_PROMPT
        else:
            lines = [f'Discussion Topic: "{self.state.config.topic}"', "", "Previous messages:"]
            lines.extend(f"[{m.speaker_name}]: {m.content}" for m in recent)
            lines.append("")
            lines.append(
                "Please respond to the discussion above, particularly addressing points "
                f"from {recent[-1].speaker_name} when relevant."
            )
            prompt = "\n".join(lines)

        messages: list[ChatMessage] = [{"role": "user", "content": prompt}]
        messages.extend({"role": "user", "content": s} for s in steering)
        return messages

    def _unreported_interventions(self) -> list[UserIntervention]:
        with self._lock:
            pending = self.state.interventions[self._reported_interventions:]
            self._reported_interventions = len(self.state.interventions)
        return pending

    def _is_terminated(self) -> bool:
        with self._lock:
            return self.state.status is DiscussionStatus.TERMINATED

    def _terminated_event(self) -> DiscussionEvent:
        return DiscussionEvent(type=DiscussionEventType.DISCUSSION_TERMINATED, state=self.get_state())

    def _complete(self, reason: CompletionReason) -> DiscussionEvent:
        with self._lock:
            if not self.state.is_running:
                reason = None
            else:
                self.state.status = transition(self.state.status, DiscussionStatus.COMPLETED)
                self.state.completion_reason = reason
                self.state.completed_at = time.time()
        if reason is None:
            return self._terminated_event()
        logger.info("Discussion %s complete: %s", self.state.id, reason.value)
        return DiscussionEvent(
            type=DiscussionEventType.DISCUSSION_COMPLETE,
            reason=reason,
            state=self.get_state(),
        )

    def _halt(self, error: str) -> DiscussionEvent:
        with self._lock:
            if self.state.is_running:
                self.state.status = transition(self.state.status, DiscussionStatus.TERMINATED)
                self.state.completed_at = time.time()
            self.state.error = error
        logger.error("Discussion %s halted: %s", self.state.id, error)
        return DiscussionEvent(
            type=DiscussionEventType.ERROR,
            round=self.state.current_round,
            error=error,
            state=self.get_state(),
        )


def _current_task_cancelling() -> bool:
    """True when the task driving start() is itself being cancelled."""
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0
