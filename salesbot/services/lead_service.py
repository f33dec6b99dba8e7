import time
from enum import Enum
from typing import Callable

from salesbot.logging_config import get_logger
from salesbot.services.keywords import KeywordConfig, contains_any
from salesbot.services.state_store import LeadRecord, StateStore

logger = get_logger("lead_service")


class LeadIntent(str, Enum):
    COLD = "COLD"
    WARM = "WARM"
    HOT = "HOT"

    @property
    def rank(self) -> int:
        return INTENT_RANK[self]


INTENT_RANK = {
    LeadIntent.COLD: 1,
    LeadIntent.WARM: 2,
    LeadIntent.HOT: 3,
}


def detect_intent(text: str, keywords: KeywordConfig) -> LeadIntent:
    """Classify a single message, HOT checked before WARM."""
    if contains_any(text, keywords.hot):
        return LeadIntent.HOT
    if contains_any(text, keywords.warm):
        return LeadIntent.WARM
    return LeadIntent.COLD


class LeadClassifier:
    """Ratcheting lead intent: the stored intent is only ever upgraded."""

    def __init__(self, state: StateStore, keywords: KeywordConfig, clock: Callable[[], float] = time.time):
        self.state = state
        self.keywords = keywords
        self.clock = clock

    def current(self, participant: str) -> LeadIntent:
        record = self.state.leads.get(participant)
        if record is None:
            return LeadIntent.COLD
        try:
            return LeadIntent(record.intent)
        except ValueError:
            return LeadIntent.COLD

    def classify(self, participant: str, text: str) -> LeadIntent:
        detected = detect_intent(text, self.keywords)
        stored = self.current(participant)
        is_new = self.state.leads.get(participant) is None

        if not is_new and detected.rank <= stored.rank:
            return stored

        self.state.leads.set(participant, LeadRecord(intent=detected.value, updated_at=self.clock()))
        self.state.save()
        if not is_new:
            logger.info(
                f"Lead upgraded {stored.value} -> {detected.value}",
                extra={"context": {"participant": participant}},
            )
        return detected
