"""Registry of live discussions with an explicit create/get/remove lifecycle."""

import logging
import threading
from collections.abc import Callable

from llm_council.discussion.orchestrator import DiscussionOrchestrator
from llm_council.discussion.state import DiscussionConfig

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[DiscussionConfig, str], DiscussionOrchestrator]


class DiscussionSessions:
    """Live orchestrators keyed by discussion (conversation) id.

    One discussion per id. remove() releases the orchestrator's model handles.
    """

    def __init__(self, factory: OrchestratorFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, DiscussionOrchestrator] = {}
        self._lock = threading.Lock()

    def create(self, discussion_id: str, config: DiscussionConfig) -> DiscussionOrchestrator:
        """Build and register an orchestrator.

        Raises:
            ValueError: If a discussion with this id is already live.
        """
        with self._lock:
            if discussion_id in self._sessions:
                raise ValueError(f"Discussion {discussion_id} is already running")
            orchestrator = self._factory(config, discussion_id)
            self._sessions[discussion_id] = orchestrator
        logger.debug("Registered discussion %s", discussion_id)
        return orchestrator

    def get(self, discussion_id: str) -> DiscussionOrchestrator | None:
        with self._lock:
            return self._sessions.get(discussion_id)

    def remove(self, discussion_id: str) -> bool:
        with self._lock:
            orchestrator = self._sessions.pop(discussion_id, None)
        if orchestrator is None:
            return False
        orchestrator.cleanup()
        logger.debug("Removed discussion %s", discussion_id)
        return True

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, discussion_id: object) -> bool:
        with self._lock:
            return discussion_id in self._sessions
