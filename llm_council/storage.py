"""JSON file store for conversations. One file per conversation, last writer wins."""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from llm_council.models import RoundtableTurn

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class ConversationNotFound(KeyError):
    """Raised when an operation targets a conversation that does not exist."""


@dataclass
class ConversationMessage:
    role: str                                  # "user", "assistant" or "system"
    content: str | None = None
    model_name: str | None = None
    stage1: list[dict] | None = None
    stage2: list[dict] | None = None
    stage3: dict | None = None
    metadata: dict | None = None
    roundtable_turns: list[RoundtableTurn] | None = None
    is_intervention: bool = False
    intervention_type: str | None = None
    discussion_state: dict | None = None

    def to_dict(self) -> dict:
        raw = asdict(self)
        return {k: v for k, v in raw.items() if v is not None and not (k == "is_intervention" and v is False)}

    @classmethod
    def from_dict(cls, raw: dict) -> "ConversationMessage":
        turns = raw.get("roundtable_turns")
        return cls(
            role=raw["role"],
            content=raw.get("content"),
            model_name=raw.get("model_name"),
            stage1=raw.get("stage1"),
            stage2=raw.get("stage2"),
            stage3=raw.get("stage3"),
            metadata=raw.get("metadata"),
            roundtable_turns=[RoundtableTurn(**t) for t in turns] if turns is not None else None,
            is_intervention=bool(raw.get("is_intervention", False)),
            intervention_type=raw.get("intervention_type"),
            discussion_state=raw.get("discussion_state"),
        )


@dataclass
class Conversation:
    id: str
    created_at: str
    title: str = DEFAULT_TITLE
    messages: list[ConversationMessage] = field(default_factory=list)
    mode: str | None = None                    # "council", "roundtable" or "discussion"
    config: dict | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "mode": self.mode,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Conversation":
        return cls(
            id=raw["id"],
            created_at=raw["created_at"],
            title=raw.get("title") or DEFAULT_TITLE,
            messages=[ConversationMessage.from_dict(m) for m in raw.get("messages", [])],
            mode=raw.get("mode"),
            config=raw.get("config"),
        )


@dataclass
class ConversationMetadata:
    id: str
    created_at: str
    title: str
    message_count: int


class ConversationStore:
    """Conversations persisted as ``<data_dir>/<id>.json``."""

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    def _path(self, conversation_id: str) -> Path:
        if not _SAFE_ID.match(conversation_id):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self._data_dir / f"{conversation_id}.json"

    def create(self, conversation_id: str) -> Conversation:
        conversation = Conversation(
            id=conversation_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.save(conversation)
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        path = self._path(conversation_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return Conversation.from_dict(json.load(f))

    def save(self, conversation: Conversation) -> None:
        path = self._path(conversation.id)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(conversation.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug("Saved conversation %s (%d messages)", conversation.id, len(conversation.messages))

    def append_message(self, conversation_id: str, message: ConversationMessage) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        conversation.messages.append(message)
        self.save(conversation)

    def update_title(self, conversation_id: str, title: str) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        conversation.title = title
        self.save(conversation)

    def list_conversations(self) -> list[ConversationMetadata]:
        """Metadata for all conversations, newest first."""
        if not self._data_dir.exists():
            return []
        conversations: list[ConversationMetadata] = []
        for path in self._data_dir.glob("*.json"):
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            conversations.append(
                ConversationMetadata(
                    id=raw["id"],
                    created_at=raw["created_at"],
                    title=raw.get("title") or DEFAULT_TITLE,
                    message_count=len(raw.get("messages", [])),
                )
            )
        conversations.sort(key=lambda c: c.created_at, reverse=True)
        return conversations
