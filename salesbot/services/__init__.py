from salesbot.services.lead_service import LeadClassifier, LeadIntent
from salesbot.services.reply_service import ReplyEngine, TurnOutcome
from salesbot.services.state_machine import InvalidTransitionError, TurnState

__all__ = [
    "InvalidTransitionError",
    "LeadClassifier",
    "LeadIntent",
    "ReplyEngine",
    "TurnOutcome",
    "TurnState",
]
