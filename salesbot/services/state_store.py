"""Durable safe-mode and lead state, kept in a single JSON file."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from salesbot.logging_config import get_logger
from salesbot.services.stores import MemoryStore

logger = get_logger("state_store")


@dataclass
class SafeModeState:
    replied_message_count: int = 0
    last_sender_was_operator: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "repliedMessageCount": self.replied_message_count,
            "lastSenderWasOperator": self.last_sender_was_operator,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SafeModeState":
        count = data.get("repliedMessageCount", 0)
        return cls(
            replied_message_count=max(int(count), 0),
            last_sender_was_operator=bool(data.get("lastSenderWasOperator", False)),
        )


@dataclass
class LeadRecord:
    intent: str
    updated_at: float

    def to_dict(self) -> dict[str, Any]:
        return {"intent": self.intent, "updatedAt": self.updated_at}

    @classmethod
    def from_dict(cls, data: dict) -> "LeadRecord":
        return cls(intent=str(data["intent"]), updated_at=float(data.get("updatedAt", 0.0)))


class StateStore:
    """Holds the persisted subset of participant state.

    File shape: ``{"safeMode": {participant: {...}}, "leads": {participant: {...}}}``.
    The file is rewritten in full after every mutation; write failures are
    logged and the in-memory state stays authoritative.
    """

    def __init__(self, path: Optional[Path]):
        self.path = path
        self.safe_mode: MemoryStore[SafeModeState] = MemoryStore()
        self.leads: MemoryStore[LeadRecord] = MemoryStore()

    def load(self) -> None:
        if self.path is None:
            return
        if not self.path.exists():
            logger.warning("State file not found, starting with empty state", extra={"context": {"path": str(self.path)}})
            return

        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                f"State file unreadable, starting with empty state: {exc}",
                extra={"context": {"path": str(self.path)}},
            )
            return

        if not isinstance(parsed, dict):
            logger.warning("State file has unexpected shape, starting with empty state")
            return

        safe_mode = parsed.get("safeMode") if isinstance(parsed.get("safeMode"), dict) else {}
        leads = parsed.get("leads") if isinstance(parsed.get("leads"), dict) else {}

        for participant, raw in safe_mode.items():
            try:
                self.safe_mode.set(participant, SafeModeState.from_dict(raw))
            except (TypeError, ValueError, AttributeError):
                logger.warning(f"Skipping corrupt safe-mode entry for {participant}")

        for participant, raw in leads.items():
            try:
                self.leads.set(participant, LeadRecord.from_dict(raw))
            except (TypeError, ValueError, KeyError, AttributeError):
                logger.warning(f"Skipping corrupt lead entry for {participant}")

        logger.info(
            "State loaded",
            extra={"context": {"safe_mode": len(self.safe_mode), "leads": len(self.leads)}},
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "safeMode": {participant: state.to_dict() for participant, state in self.safe_mode.items()},
            "leads": {participant: record.to_dict() for participant, record in self.leads.items()},
        }

    def save(self) -> bool:
        if self.path is None:
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(self.snapshot(), indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f"Failed to persist state: {exc}", extra={"context": {"path": str(self.path)}})
            return False

    def get_safe_mode(self, participant: str) -> SafeModeState:
        state = self.safe_mode.get(participant)
        if state is None:
            state = SafeModeState()
            self.safe_mode.set(participant, state)
        return state
