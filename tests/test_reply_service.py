import asyncio

import pytest

from conftest import FakeProvider
from salesbot.services.escalation_service import MSG_CLOSING, MSG_ESCALATION, HandoffReason
from salesbot.services.lead_service import LeadIntent
from salesbot.services.llm import LLMError
from salesbot.services.state_machine import TurnState

PHONE = "919876543210"
JID = f"{PHONE}@s.whatsapp.net"


def inbound(text, sender=JID, **extra):
    message = {"id": "m1", "from": sender, "type": "text", "text": {"body": text}, "from_me": False}
    message.update(extra)
    return message


def outgoing(text, to=JID):
    return {"id": "o1", "from": "910000000000@s.whatsapp.net", "to": to, "type": "text", "text": {"body": text}, "from_me": True}


class TestFirstMessage:
    @pytest.mark.asyncio
    async def test_first_message_is_answered(self, engine, sender):
        outcome = await engine.process_turn(PHONE, JID, "hello")

        assert outcome.state == TurnState.REPLIED
        assert outcome.delivered is True
        assert sender.sent == [(JID, outcome.reply)]
        assert engine.history.history(PHONE) == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": outcome.reply},
        ]
        assert outcome.path == [
            TurnState.IDLE,
            TurnState.BATCHING,
            TurnState.EVALUATING,
            TurnState.GENERATING,
            TurnState.REPLIED,
            TurnState.IDLE,
        ]

    @pytest.mark.asyncio
    async def test_generation_request_carries_system_prompt_and_intent(self, engine, provider):
        await engine.process_turn(PHONE, JID, "hello")

        messages = provider.calls[0]
        assert messages[0]["role"] == "system"
        assert "Lead intent: COLD" in messages[0]["content"]
        assert messages[1:] == [{"role": "user", "content": "hello"}]

    @pytest.mark.asyncio
    async def test_first_message_passes_safe_mode_without_keywords(self, engine, state):
        state.get_safe_mode(PHONE).last_sender_was_operator = True

        outcome = await engine.process_turn(PHONE, JID, "hmm ok")

        assert outcome.state == TurnState.REPLIED


class TestSafeModeCounter:
    @pytest.mark.asyncio
    async def test_count_increments_once_per_turn(self, engine, state, clock):
        counts = []
        for text in ["hello", "how are you", "ok", "price?"]:
            await engine.process_turn(PHONE, JID, text)
            counts.append(state.safe_mode.get(PHONE).replied_message_count)
            clock.advance(120)

        assert counts == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_suppressed_by_safe_mode_after_bot_replied(self, engine, sender, clock):
        await engine.process_turn(PHONE, JID, "hello")
        clock.advance(120)

        outcome = await engine.process_turn(PHONE, JID, "ok cool")

        assert outcome.state == TurnState.SUPPRESSED
        assert outcome.reason == "safe_mode"
        assert len(sender.sent) == 1

    @pytest.mark.asyncio
    async def test_consecutive_customer_messages_reopen_the_bot(self, engine, sender, clock):
        await engine.process_turn(PHONE, JID, "hello")
        clock.advance(120)
        await engine.process_turn(PHONE, JID, "ok cool")
        clock.advance(120)

        outcome = await engine.process_turn(PHONE, JID, "are you there")

        assert outcome.state == TurnState.REPLIED
        assert len(sender.sent) == 2

    @pytest.mark.asyncio
    async def test_state_is_persisted_after_turn(self, engine, state, tmp_path):
        await engine.process_turn(PHONE, JID, "what is the price")

        saved = (tmp_path / "state.json").read_text(encoding="utf-8")
        assert PHONE in saved
        assert '"WARM"' in saved


class TestHumanOverride:
    @pytest.mark.asyncio
    async def test_operator_message_silences_bot(self, engine, provider, sender):
        assert await engine.handle_message(outgoing("Hi, this is Rahul from the team")) == "operator"

        outcome = await engine.process_turn(PHONE, JID, "price? kam karo, pin code 123456")

        assert outcome.state == TurnState.SUPPRESSED
        assert outcome.reason == "human_override"
        assert sender.sent == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_trigger_keyword_after_override_expires(self, engine, sender, clock):
        await engine.process_turn(PHONE, JID, "hello")
        engine.on_operator_message(PHONE, "Let me check that for you")
        clock.advance(16 * 60)

        outcome = await engine.process_turn(PHONE, JID, "what is the price")

        assert outcome.state == TurnState.REPLIED
        assert len(sender.sent) == 2

    @pytest.mark.asyncio
    async def test_plain_text_after_override_expires_stays_silent(self, engine, clock):
        await engine.process_turn(PHONE, JID, "hello")
        engine.on_operator_message(PHONE, "Let me check that for you")
        clock.advance(16 * 60)

        outcome = await engine.process_turn(PHONE, JID, "thanks")

        assert outcome.reason == "safe_mode"

    @pytest.mark.asyncio
    async def test_echo_of_own_reply_is_not_operator_activity(self, engine):
        outcome = await engine.process_turn(PHONE, JID, "hello")

        label = await engine.handle_message(outgoing(outcome.reply))

        assert label == "echo"
        assert engine.override.is_active(PHONE) is False

    @pytest.mark.asyncio
    async def test_outgoing_without_recipient_is_skipped(self, engine):
        message = outgoing("hi")
        message.pop("to")
        message.pop("from")

        assert await engine.handle_message(message) == "malformed"


class TestHandoff:
    @pytest.mark.asyncio
    async def test_closing_wins_over_discount(self, engine, provider, sender):
        outcome = await engine.process_turn(PHONE, JID, "my pin code 123456, thoda kam karo")

        assert outcome.state == TurnState.HANDOFF_SENT
        assert outcome.reply == MSG_CLOSING
        assert sender.sent == [(JID, MSG_CLOSING)]
        assert provider.calls == []
        assert engine.escalation.active(PHONE).reason == HandoffReason.CLOSING

    @pytest.mark.asyncio
    async def test_escalation_silences_until_window_ends(self, engine, sender, clock):
        outcome = await engine.process_turn(PHONE, JID, "can you give a discount")
        assert outcome.reply == MSG_ESCALATION

        clock.advance(2 * 60)
        suppressed = await engine.process_turn(PHONE, JID, "price?")
        assert suppressed.reason == "escalation"

        clock.advance(20 * 60)
        replied = await engine.process_turn(PHONE, JID, "price?")
        assert replied.state == TurnState.REPLIED
        assert len(sender.sent) == 2

    @pytest.mark.asyncio
    async def test_closing_after_bot_replied(self, engine, provider, sender, clock):
        await engine.process_turn(PHONE, JID, "hi, I study BCA")
        clock.advance(120)

        outcome = await engine.process_turn(PHONE, JID, "my address is Delhi pin code 110001")

        assert outcome.state == TurnState.HANDOFF_SENT
        assert outcome.reply == MSG_CLOSING
        assert sender.sent[-1] == (JID, MSG_CLOSING)
        assert len(provider.calls) == 1
        assert engine.escalation.active(PHONE).reason == HandoffReason.CLOSING

    @pytest.mark.asyncio
    async def test_bare_pin_code_after_bot_replied(self, engine, clock):
        await engine.process_turn(PHONE, JID, "hello")
        clock.advance(120)

        outcome = await engine.process_turn(PHONE, JID, "110001")

        assert outcome.reply == MSG_CLOSING

    @pytest.mark.asyncio
    async def test_discount_after_operator_override_expires(self, engine, sender, clock):
        await engine.process_turn(PHONE, JID, "hello")
        engine.on_operator_message(PHONE, "Let me check that for you")
        clock.advance(16 * 60)

        outcome = await engine.process_turn(PHONE, JID, "kam karo please")

        assert outcome.state == TurnState.HANDOFF_SENT
        assert outcome.reply == MSG_ESCALATION
        assert sender.sent[-1] == (JID, MSG_ESCALATION)
        assert engine.escalation.active(PHONE).reason == HandoffReason.ESCALATION

    @pytest.mark.asyncio
    async def test_handoff_is_recorded_in_history(self, engine):
        await engine.process_turn(PHONE, JID, "payment done")

        assert engine.history.history(PHONE) == [
            {"role": "user", "content": "payment done"},
            {"role": "assistant", "content": MSG_CLOSING},
        ]


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_duplicate_reply_is_not_delivered(self, tmp_path, sender, state, clock):
        from conftest import make_settings
        from salesbot.services.reply_service import ReplyEngine

        provider = FakeProvider(replies=["Same answer 🙂", "Same answer 🙂"])
        engine = ReplyEngine(make_settings(tmp_path), provider, sender, state, clock=clock)

        await engine.process_turn(PHONE, JID, "hello")
        clock.advance(61)
        outcome = await engine.process_turn(PHONE, JID, "what is the price")

        assert outcome.state == TurnState.SUPPRESSED
        assert outcome.reason == "duplicate_reply"
        assert len(provider.calls) == 2
        assert sender.sent == [(JID, "Same answer 🙂")]

    @pytest.mark.asyncio
    async def test_hot_leads_get_short_interval(self, engine, sender, clock):
        await engine.process_turn(PHONE, JID, "i want to buy")
        assert engine.classifier.current(PHONE) == LeadIntent.HOT
        clock.advance(6)

        outcome = await engine.process_turn(PHONE, JID, "send payment details")

        assert outcome.state == TurnState.REPLIED

    @pytest.mark.asyncio
    async def test_other_leads_wait_default_interval(self, engine, clock):
        await engine.process_turn(PHONE, JID, "hello")
        clock.advance(6)

        outcome = await engine.process_turn(PHONE, JID, "what is the price")

        assert outcome.reason == "rate_limit"

    @pytest.mark.asyncio
    async def test_hot_intent_is_permanent(self, engine, clock):
        await engine.process_turn(PHONE, JID, "i want to buy")
        clock.advance(61)
        outcome = await engine.process_turn(PHONE, JID, "how much for a sample")

        assert outcome.state == TurnState.REPLIED
        assert engine.classifier.current(PHONE) == LeadIntent.HOT


class TestFailures:
    @pytest.mark.asyncio
    async def test_generation_failure_rolls_back(self, tmp_path, sender, state, clock):
        from conftest import make_settings
        from salesbot.services.reply_service import ReplyEngine

        provider = FakeProvider(replies=[LLMError("timed out")])
        engine = ReplyEngine(make_settings(tmp_path), provider, sender, state, clock=clock)

        outcome = await engine.process_turn(PHONE, JID, "hello")

        assert outcome.state == TurnState.SUPPRESSED
        assert outcome.reason == "generation_failed"
        assert engine.history.history(PHONE) == []
        assert state.safe_mode.get(PHONE).last_sender_was_operator is False
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_state(self, engine, sender, state):
        sender.ok = False

        outcome = await engine.process_turn(PHONE, JID, "hello")

        assert outcome.state == TurnState.REPLIED
        assert outcome.delivered is False
        assert len(engine.history.history(PHONE)) == 2
        assert state.safe_mode.get(PHONE).last_sender_was_operator is True


class TestWebhookRouting:
    @pytest.mark.asyncio
    async def test_non_text_message_is_ignored(self, engine, provider, sender, state):
        label = await engine.handle_message({"from": JID, "type": "image", "from_me": False})
        await asyncio.sleep(0.05)

        assert label == "unsupported"
        assert provider.calls == []
        assert sender.sent == []
        assert engine.history.history(PHONE) == []
        assert state.safe_mode.get(PHONE) is None

    @pytest.mark.asyncio
    async def test_empty_body_is_skipped(self, engine):
        assert await engine.handle_message(inbound("   ")) == "empty"

    @pytest.mark.asyncio
    async def test_malformed_message_is_skipped(self, engine):
        assert await engine.handle_message({"from": JID, "type": "text", "text": "not-an-object"}) == "malformed"
        assert await engine.handle_message("garbage") == "malformed"

    @pytest.mark.asyncio
    async def test_burst_is_coalesced_into_one_turn(self, engine, provider, sender):
        for text in ["hi", "I need", "help"]:
            assert await engine.handle_message(inbound(text)) == "buffered"

        await asyncio.sleep(0.1)

        assert len(provider.calls) == 1
        assert provider.calls[0][-1] == {"role": "user", "content": "hi I need help"}
        assert len(sender.sent) == 1

    @pytest.mark.asyncio
    async def test_dispatch_isolates_bad_messages(self, engine, provider):
        count = engine.dispatch([None, {"type": "text"}, inbound("hello")])
        await asyncio.sleep(0.1)

        assert count == 3
        assert len(provider.calls) == 1


class TestSerialization:
    @pytest.mark.asyncio
    async def test_turns_for_same_participant_do_not_overlap(self, tmp_path, sender, state, clock):
        from conftest import make_settings
        from salesbot.services.llm import LLMResponse
        from salesbot.services.reply_service import ReplyEngine

        release = asyncio.Event()
        entered = asyncio.Event()

        class SlowProvider(FakeProvider):
            async def generate(self, messages, model=None, temperature=None, max_tokens=None):
                entered.set()
                await release.wait()
                return LLMResponse(content="done", model="fake")

        engine = ReplyEngine(make_settings(tmp_path), SlowProvider(), sender, state, clock=clock)

        first = asyncio.create_task(engine.process_turn(PHONE, JID, "hello"))
        await entered.wait()
        second = asyncio.create_task(engine.process_turn(PHONE, JID, "anyone?"))
        await asyncio.sleep(0.01)

        assert state.safe_mode.get(PHONE).replied_message_count == 1

        release.set()
        await asyncio.gather(first, second)

        assert state.safe_mode.get(PHONE).replied_message_count == 2


class TestFollowUps:
    @pytest.mark.asyncio
    async def test_nudges_fire_after_inactivity(self, engine_factory, sender):
        engine = engine_factory(
            followup_enabled=True,
            followup_first_delay_minutes=0.001,
            followup_second_delay_minutes=0.002,
        )

        await engine.handle_message(inbound("hello"))
        await asyncio.sleep(0.5)

        assert len(sender.sent) == 3
        assert engine.followups.nudges_sent(PHONE) == 2
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_operator_activity_cancels_nudge(self, engine_factory):
        engine = engine_factory(followup_enabled=True)

        await engine.process_turn(PHONE, JID, "hello")
        assert engine.followups.is_armed(PHONE) is True

        engine.on_operator_message(PHONE, "I'll take it from here")

        assert engine.followups.is_armed(PHONE) is False
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_nudge_waits_for_in_flight_turn(self, tmp_path, sender, state, clock):
        from conftest import make_settings
        from salesbot.services.followup_service import FOLLOWUP_MESSAGES
        from salesbot.services.reply_service import ReplyEngine

        release = asyncio.Event()

        class FailingSlowProvider(FakeProvider):
            async def generate(self, messages, model=None, temperature=None, max_tokens=None):
                await release.wait()
                raise LLMError("timed out")

        settings = make_settings(tmp_path, followup_enabled=True, followup_first_delay_minutes=0.0005)
        engine = ReplyEngine(settings, FailingSlowProvider(), sender, state, clock=clock)

        turn = asyncio.create_task(engine.process_turn(PHONE, JID, "hello"))
        await asyncio.sleep(0.1)
        assert sender.sent == []

        release.set()
        outcome = await turn
        await asyncio.sleep(0.05)

        assert outcome.reason == "generation_failed"
        assert engine.history.history(PHONE) == [{"role": "assistant", "content": FOLLOWUP_MESSAGES[1]}]
        assert sender.sent == [(JID, FOLLOWUP_MESSAGES[1])]
        await engine.shutdown()
