"""Suppression gates evaluated for every combined inbound turn.

Order matters: human override, handoff silence, safe mode, rate limit.
Evaluation stops at the first gate that suppresses.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from salesbot.logging_config import get_logger
from salesbot.services.escalation_service import EscalationController
from salesbot.services.keywords import KeywordConfig, contains_any
from salesbot.services.lead_service import LeadIntent
from salesbot.services.state_store import StateStore
from salesbot.services.stores import KeyValueStore, MemoryStore

logger = get_logger("policy_service")


@dataclass
class TurnContext:
    participant: str
    text: str
    intent: LeadIntent = LeadIntent.COLD


@dataclass
class GateDecision:
    allowed: bool
    gate: Optional[str] = None
    reason: Optional[str] = None

    @staticmethod
    def allow() -> "GateDecision":
        return GateDecision(allowed=True)

    @staticmethod
    def suppress(gate: str, reason: str) -> "GateDecision":
        return GateDecision(allowed=False, gate=gate, reason=reason)


class Gate(Protocol):
    name: str

    def check(self, ctx: TurnContext) -> Optional[str]:
        """Return a suppression reason, or None to let the turn through."""


class HumanOverride:
    """Timed silence started whenever an operator writes to the participant."""

    name = "human_override"

    def __init__(
        self,
        duration_seconds: float,
        store: Optional[KeyValueStore[float]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.duration_seconds = duration_seconds
        self.store = store if store is not None else MemoryStore()
        self.clock = clock

    def activate(self, participant: str) -> float:
        until = self.clock() + self.duration_seconds
        self.store.set(participant, until)
        return until

    def is_active(self, participant: str) -> bool:
        until = self.store.get(participant)
        if until is None:
            return False
        if self.clock() >= until:
            self.store.delete(participant)
            return False
        return True

    def check(self, ctx: TurnContext) -> Optional[str]:
        if self.is_active(ctx.participant):
            return "operator is handling the chat"
        return None


class HandoffSilence:
    name = "escalation"

    def __init__(self, controller: EscalationController):
        self.controller = controller

    def check(self, ctx: TurnContext) -> Optional[str]:
        state = self.controller.active(ctx.participant)
        if state is not None:
            return f"{state.reason.value} handoff in progress"
        return None


class SafeMode:
    """Keep the bot out of chats where someone already replied last.

    Passes on the participant's first turn, when the participant also sent
    the previous message, when the text carries a trigger keyword, or when it
    carries a closing or escalation signal the handoff step must see.
    """

    name = "safe_mode"

    def __init__(
        self,
        state: StateStore,
        keywords: KeywordConfig,
        escalation: Optional[EscalationController] = None,
    ):
        self.state = state
        self.keywords = keywords
        self.escalation = escalation

    def check(self, ctx: TurnContext) -> Optional[str]:
        current = self.state.safe_mode.get(ctx.participant)
        if current is None or current.replied_message_count == 0:
            return None
        if not current.last_sender_was_operator:
            return None
        if contains_any(ctx.text, self.keywords.safe_mode_triggers):
            return None
        if self.escalation is not None and self.escalation.detect(ctx.text)[0] is not None:
            return None
        return "last message came from our side and no trigger keyword"

    def record_user_turn(self, participant: str) -> None:
        current = self.state.get_safe_mode(participant)
        current.replied_message_count += 1
        current.last_sender_was_operator = False
        self.state.save()

    def record_outgoing(self, participant: str) -> None:
        current = self.state.get_safe_mode(participant)
        current.last_sender_was_operator = True
        self.state.save()


@dataclass
class RateLimitRecord:
    last_reply_at: float
    last_reply_text: str


class RateLimiter:
    """Minimum interval between replies, shorter for HOT leads, plus duplicate suppression."""

    name = "rate_limit"

    def __init__(
        self,
        hot_interval_seconds: float,
        default_interval_seconds: float,
        store: Optional[KeyValueStore[RateLimitRecord]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.hot_interval_seconds = hot_interval_seconds
        self.default_interval_seconds = default_interval_seconds
        self.store = store if store is not None else MemoryStore()
        self.clock = clock

    def interval_for(self, intent: LeadIntent) -> float:
        if intent == LeadIntent.HOT:
            return self.hot_interval_seconds
        return self.default_interval_seconds

    def check(self, ctx: TurnContext) -> Optional[str]:
        record = self.store.get(ctx.participant)
        if record is None:
            return None
        elapsed = self.clock() - record.last_reply_at
        interval = self.interval_for(ctx.intent)
        if elapsed < interval:
            return f"last reply {elapsed:.1f}s ago, minimum {interval:.0f}s for {ctx.intent.value}"
        return None

    def is_duplicate(self, participant: str, text: str) -> bool:
        record = self.store.get(participant)
        return record is not None and record.last_reply_text == text

    def record_reply(self, participant: str, text: str) -> None:
        self.store.set(participant, RateLimitRecord(last_reply_at=self.clock(), last_reply_text=text))


class SuppressionChain:
    def __init__(self, gates: List[Gate]):
        self.gates = list(gates)

    def evaluate(self, ctx: TurnContext) -> GateDecision:
        for gate in self.gates:
            reason = gate.check(ctx)
            if reason is not None:
                logger.info(
                    f"Suppressed by {gate.name}: {reason}",
                    extra={"context": {"participant": ctx.participant, "gate": gate.name}},
                )
                return GateDecision.suppress(gate.name, reason)
        return GateDecision.allow()
