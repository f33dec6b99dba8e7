from salesbot.services.llm.base import LLMError, LLMProvider, LLMResponse
from salesbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
