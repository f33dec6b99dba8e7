from typing import List, Optional

from salesbot.logging_config import get_logger
from salesbot.services.stores import KeyValueStore, MemoryStore

logger = get_logger("conversation_service")

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class ConversationStore:
    """Chronological chat history per participant, capped at ``max_pairs`` exchanges."""

    def __init__(self, max_pairs: int = 20, store: Optional[KeyValueStore[List[dict]]] = None):
        self.max_pairs = max_pairs
        self.store = store if store is not None else MemoryStore()

    @property
    def max_messages(self) -> int:
        return self.max_pairs * 2

    def history(self, participant: str) -> List[dict]:
        return [dict(turn) for turn in self.store.get(participant) or []]

    def append(self, participant: str, role: str, content: str) -> None:
        turns = self.store.get(participant)
        if turns is None:
            turns = []
            self.store.set(participant, turns)
            logger.info("New conversation started", extra={"context": {"participant": participant}})
        turns.append({"role": role, "content": content})
        self._trim(participant, turns)

    def rollback_last(self, participant: str, role: str, content: str) -> bool:
        """Remove the newest turn if it is exactly (role, content)."""
        turns = self.store.get(participant)
        if not turns:
            return False
        last = turns[-1]
        if last.get("role") != role or last.get("content") != content:
            return False
        turns.pop()
        return True

    def _trim(self, participant: str, turns: List[dict]) -> None:
        overflow = len(turns) - self.max_messages
        if overflow > 0:
            del turns[:overflow]
            logger.info(
                f"Trimmed history to {self.max_messages} messages",
                extra={"context": {"participant": participant}},
            )
