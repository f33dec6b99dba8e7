import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from salesbot.logging_config import get_logger
from salesbot.services.keywords import PIN_CODE_PATTERN, KeywordConfig, contains_any
from salesbot.services.stores import KeyValueStore, MemoryStore

logger = get_logger("escalation_service")

MSG_CLOSING = (
    "Thank you! ✅ We have received your order details. "
    "Our team will verify and confirm your order shortly. 🙏"
)
MSG_ESCALATION = (
    "Let me connect you with our senior team member, "
    "they will get back to you in a few minutes. 🙏"
)


class HandoffReason(str, Enum):
    ESCALATION = "escalation"
    CLOSING = "closing"


@dataclass
class EscalationState:
    silenced_until: float
    reason: HandoffReason
    trigger: Optional[str] = None


class EscalationController:
    """Hands a conversation over to humans when trigger phrases appear.

    Order-confirmation signals are checked first and silence the bot for the
    long closing window; discount or confusion signals silence it for the
    shorter escalation window.
    """

    def __init__(
        self,
        keywords: KeywordConfig,
        escalation_seconds: float,
        closing_seconds: float,
        store: Optional[KeyValueStore[EscalationState]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.keywords = keywords
        self.escalation_seconds = escalation_seconds
        self.closing_seconds = closing_seconds
        self.store = store if store is not None else MemoryStore()
        self.clock = clock

    def detect(self, text: str) -> tuple[Optional[HandoffReason], Optional[str]]:
        trigger = contains_any(text, self.keywords.closing)
        if trigger is None and self.keywords.detect_pin_codes:
            match = PIN_CODE_PATTERN.search(text or "")
            trigger = match.group(0) if match else None
        if trigger is not None:
            return HandoffReason.CLOSING, trigger

        trigger = contains_any(text, self.keywords.escalation)
        if trigger is not None:
            return HandoffReason.ESCALATION, trigger

        return None, None

    def check_and_handoff(self, participant: str, text: str) -> Optional[str]:
        """Return the handoff message to send instead of generating, or None."""
        reason, trigger = self.detect(text)
        if reason is None:
            return None

        if reason == HandoffReason.CLOSING:
            duration = self.closing_seconds
            message = MSG_CLOSING
        else:
            duration = self.escalation_seconds
            message = MSG_ESCALATION

        self.store.set(
            participant,
            EscalationState(silenced_until=self.clock() + duration, reason=reason, trigger=trigger),
        )
        logger.info(
            f"Handoff triggered: {reason.value}",
            extra={"context": {"participant": participant, "trigger": trigger, "silence_seconds": duration}},
        )
        return message

    def active(self, participant: str) -> Optional[EscalationState]:
        state = self.store.get(participant)
        if state is None:
            return None
        if self.clock() >= state.silenced_until:
            self.store.delete(participant)
            logger.info(f"Handoff silence expired ({state.reason.value})", extra={"context": {"participant": participant}})
            return None
        return state
