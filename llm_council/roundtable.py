"""Roundtable mode: round-robin turns where each model sees the whole conversation."""

import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone

from llm_council.invoker import ModelInvoker
from llm_council.models import ModelResponse, ParticipantConfig, RoundtableEvent, RoundtableTurn
from llm_council.providers.base import ChatMessage
from llm_council.storage import ConversationMessage

logger = logging.getLogger(__name__)

TURN_RULES = """Follow these conversational rules:
1. Keep it short: roughly 100-200 words per turn. Say only your core point, like in a real chat.
2. No long lists, headings or elaborate Markdown structure, and no lengthy background.
3. Respond directly to specific points other participants made earlier in the conversation.
4. Skip pleasantries and go straight to the point of contention to keep the pace brisk."""


@dataclass
class Participant:
    id: str                  # model id
    name: str                # display name
    system_prompt: str | None = None


def participants_from_models(configs: list[ParticipantConfig]) -> list[Participant]:
    """Display name is the part of the model id after the provider prefix."""
    return [
        Participant(
            id=c.model,
            name=c.model.split("/", 1)[1] if "/" in c.model else c.model,
            system_prompt=c.system_prompt,
        )
        for c in configs
    ]


def next_speaker(participants: list[Participant], last_speaker_id: str | None = None) -> Participant:
    """Strict round robin. No previous speaker (or an unknown one) -> first participant."""
    if not participants:
        raise ValueError("Roundtable needs at least one participant")
    if last_speaker_id is None:
        return participants[0]
    index = next((i for i, p in enumerate(participants) if p.id == last_speaker_id), -1)
    return participants[(index + 1) % len(participants)]


def format_history(history: list[ConversationMessage]) -> list[ChatMessage]:
    """Flatten stored messages into chat messages tagged with the speaker name."""
    formatted: list[ChatMessage] = []
    for msg in history:
        if msg.role == "user":
            formatted.append({"role": "user", "content": msg.content or ""})
        elif msg.roundtable_turns:
            for turn in msg.roundtable_turns:
                formatted.append({"role": "assistant", "content": f"[{turn.model_name}]: {turn.content}"})
        elif msg.model_name and msg.content:
            formatted.append({"role": "assistant", "content": f"[{msg.model_name}]: {msg.content}"})
        elif msg.stage3:
            formatted.append(
                {"role": "assistant", "content": f"[{msg.stage3.get('model', 'Chairman')}]: {msg.stage3.get('response', '')}"}
            )
        elif msg.content and msg.role == "assistant":
            formatted.append({"role": "assistant", "content": msg.content})
    return formatted


def build_turn_system_prompt(
    speaker: Participant,
    all_participants: list[Participant],
    custom_system_prompt: str | None = None,
) -> str:
    others = ", ".join(p.name for p in all_participants if p.id != speaker.id)
    persona = custom_system_prompt or speaker.system_prompt or ""
    prompt = (
        "You are taking part in a roundtable with several expert participants.\n"
        f"You are {speaker.name} (model: {speaker.id}).\n"
        f"The other participants are: {others or 'none'}.\n"
        "Your goal is to engage with the other experts and offer complementary, "
        "corrective or critical insights.\n\n"
        f"{TURN_RULES}\n\n"
        f"{persona}"
    )
    return prompt.strip()


async def run_turn(
    invoker: ModelInvoker,
    speaker: Participant,
    history: list[ConversationMessage],
    all_participants: list[Participant],
    custom_system_prompt: str | None = None,
    timeout_sec: float | None = None,
) -> str | None:
    """Invoke one speaker once. Returns None on failure."""
    messages = format_history(history)
    system_prompt = build_turn_system_prompt(speaker, all_participants, custom_system_prompt)
    response = await invoker.invoke(speaker.id, messages, system_prompt=system_prompt, timeout_sec=timeout_sec)
    if not isinstance(response, ModelResponse):
        return None
    return response.content


def _new_turn(speaker: Participant, content: str) -> RoundtableTurn:
    return RoundtableTurn(
        id=f"{speaker.id}-{uuid.uuid4().hex[:12]}",
        model_id=speaker.id,
        model_name=speaker.name,
        content=content,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


async def stream_roundtable(
    invoker: ModelInvoker,
    history: list[ConversationMessage],
    participants: list[Participant],
    timeout_sec: float | None = None,
) -> AsyncIterator[RoundtableEvent]:
    """One roundtable session: every participant speaks once, strictly in turn.

    Turns run one at a time because each prompt includes all earlier turns.
    A failed turn is reported and skipped.
    """
    if not participants:
        raise ValueError("Roundtable needs at least one participant")

    yield RoundtableEvent(type="roundtable_start")

    turns: list[RoundtableTurn] = []
    last_speaker_id: str | None = None

    for _ in range(len(participants)):
        speaker = next_speaker(participants, last_speaker_id)
        last_speaker_id = speaker.id
        yield RoundtableEvent(type="turn_start", model_id=speaker.id, model_name=speaker.name)

        full_history = list(history)
        if turns:
            full_history.append(ConversationMessage(role="assistant", roundtable_turns=list(turns)))
        content = await run_turn(invoker, speaker, full_history, participants, timeout_sec=timeout_sec)

        if content is None:
            logger.warning("Roundtable turn failed for %s", speaker.id)
            yield RoundtableEvent(
                type="turn_error",
                model_id=speaker.id,
                model_name=speaker.name,
                message="Model failed to respond",
            )
            continue

        turn = _new_turn(speaker, content)
        turns.append(turn)
        yield RoundtableEvent(type="turn_complete", model_id=speaker.id, model_name=speaker.name, turn=turn)

    logger.info("Roundtable complete: %d/%d turns", len(turns), len(participants))
    yield RoundtableEvent(type="roundtable_complete", turns=turns)
