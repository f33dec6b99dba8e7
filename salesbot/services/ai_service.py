from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from salesbot.logging_config import get_logger
from salesbot.services.lead_service import LeadIntent
from salesbot.services.llm import LLMError, LLMProvider
from salesbot.services.result import Result

logger = get_logger("ai_service")

DEFAULT_SYSTEM_PROMPT = """You are Priya, a friendly and professional sales assistant for an assignment solution service.

Guide the customer toward placing an order:
1. Greet warmly on the first message.
2. Ask for the programme/course if it is not known yet.
3. Ask for the subject or paper code, one subject at a time.
4. Share pricing once course and subject are known; exact price depends on pages/questions.
5. Offer a free sample page for quality check.
6. Ask whether to confirm the order and share payment details.

Rules:
- Replies must be short: 3 to 4 lines maximum. This is WhatsApp, not email.
- Use 1 or 2 emojis per reply.
- Never reveal you are an AI.
- If the conversation goes off-topic, gently steer back.
- Never write or invent actual assignment answers."""

INTENT_HINTS = {
    LeadIntent.COLD: "The customer is just exploring. Build interest and ask one qualifying question.",
    LeadIntent.WARM: "The customer is interested. Share concrete details and move toward an order.",
    LeadIntent.HOT: "The customer is ready to buy. Be brief and help them complete the order now.",
}


@lru_cache(maxsize=4)
def load_knowledge(path: Optional[str]) -> str:
    if not path:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.warning(f"Knowledge file unreadable: {exc}", extra={"context": {"path": path}})
        return ""


def build_system_prompt(intent: LeadIntent, knowledge: str = "") -> str:
    parts = [DEFAULT_SYSTEM_PROMPT]
    if knowledge:
        parts.append(f"Business information:\n{knowledge}")
    parts.append(f"Lead intent: {intent.value}. {INTENT_HINTS[intent]}")
    return "\n\n".join(parts)


def build_messages(history: List[dict], intent: LeadIntent, knowledge: str = "") -> List[dict]:
    return [{"role": "system", "content": build_system_prompt(intent, knowledge)}, *history]


async def generate_reply(
    provider: LLMProvider,
    history: List[dict],
    intent: LeadIntent,
    knowledge: str = "",
) -> Result[str]:
    """Ask the provider for the next assistant turn. Never raises."""
    try:
        response = await provider.generate(build_messages(history, intent, knowledge))
    except LLMError as exc:
        return Result.from_exception(exc, "ai_error")
    except Exception as exc:
        logger.exception("Unexpected generation failure")
        return Result.from_exception(exc, "ai_error")
    return Result.success(response.content)
