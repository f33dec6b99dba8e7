import pytest

from conftest import FakeProvider
from salesbot.services.ai_service import build_messages, build_system_prompt, generate_reply, load_knowledge
from salesbot.services.lead_service import LeadIntent
from salesbot.services.llm import LLMError


class TestPrompt:
    def test_includes_intent(self):
        prompt = build_system_prompt(LeadIntent.HOT)
        assert "Lead intent: HOT" in prompt
        assert "Business information" not in prompt

    def test_includes_knowledge(self):
        prompt = build_system_prompt(LeadIntent.COLD, "Price: 300 per subject")
        assert "Price: 300 per subject" in prompt

    def test_messages_start_with_system(self):
        history = [{"role": "user", "content": "hi"}]
        messages = build_messages(history, LeadIntent.WARM)

        assert messages[0]["role"] == "system"
        assert messages[1:] == history

    def test_load_knowledge(self, tmp_path):
        path = tmp_path / "knowledge.md"
        path.write_text("  Sample pages are free.\n", encoding="utf-8")

        assert load_knowledge(str(path)) == "Sample pages are free."
        assert load_knowledge(str(tmp_path / "missing.md")) == ""
        assert load_knowledge(None) == ""


class TestGenerateReply:
    @pytest.mark.asyncio
    async def test_success(self):
        result = await generate_reply(FakeProvider(replies=["Sure! 😊"]), [], LeadIntent.COLD)

        assert result.ok is True
        assert result.value == "Sure! 😊"

    @pytest.mark.asyncio
    async def test_provider_error_becomes_failure(self):
        result = await generate_reply(FakeProvider(replies=[LLMError("timeout")]), [], LeadIntent.COLD)

        assert result.ok is False
        assert result.error == "timeout"
        assert result.error_code == "ai_error"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failure(self):
        result = await generate_reply(FakeProvider(replies=[RuntimeError()]), [], LeadIntent.COLD)

        assert result.ok is False
        assert result.error == "RuntimeError"
