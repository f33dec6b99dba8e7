"""Per-message driver: routes webhook events through the gating pipeline.

Customer text goes debounce -> suppression gates -> lead classifier ->
handoff check -> generation -> delivery. Operator-authored events only
update state. Every webhook message and every timer runs as its own task;
failures are logged at the task boundary and never reach the webhook.
"""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from salesbot.config import Settings
from salesbot.logging_config import for_participant, get_logger
from salesbot.schemas.webhook import InboundMessage
from salesbot.services.ai_service import generate_reply, load_knowledge
from salesbot.services.alert_service import alert_warning
from salesbot.services.conversation_service import ROLE_ASSISTANT, ROLE_USER, ConversationStore
from salesbot.services.debounce_service import DebounceCoordinator
from salesbot.services.escalation_service import EscalationController
from salesbot.services.followup_service import FollowUpScheduler
from salesbot.services.keywords import KeywordConfig, load_keyword_config
from salesbot.services.lead_service import LeadClassifier
from salesbot.services.llm import LLMProvider, OpenAIProvider
from salesbot.services.policy_service import (
    HandoffSilence,
    HumanOverride,
    RateLimiter,
    SafeMode,
    SuppressionChain,
    TurnContext,
)
from salesbot.services.state_machine import TurnState, is_terminal, transition
from salesbot.services.state_store import StateStore
from salesbot.services.whapi_service import WhapiClient, participant_from_address

logger = get_logger("reply_service")


@dataclass
class TurnOutcome:
    state: TurnState
    reason: Optional[str] = None
    reply: Optional[str] = None
    delivered: bool = False
    path: List[TurnState] = field(default_factory=list)


class _Turn:
    def __init__(self):
        self.state = TurnState.IDLE
        self.path = [TurnState.IDLE]

    def advance(self, to_state: TurnState) -> None:
        self.state = transition(self.state, to_state)
        self.path.append(self.state)

    def finish(self, reason: Optional[str] = None, reply: Optional[str] = None, delivered: bool = False) -> TurnOutcome:
        final = self.state
        if is_terminal(final):
            self.advance(TurnState.IDLE)
        return TurnOutcome(state=final, reason=reason, reply=reply, delivered=delivered, path=list(self.path))


class ReplyEngine:
    def __init__(
        self,
        settings: Settings,
        provider: LLMProvider,
        sender: WhapiClient,
        state: StateStore,
        keywords: Optional[KeywordConfig] = None,
        knowledge: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.provider = provider
        self.sender = sender
        self.state = state
        self.keywords = keywords or KeywordConfig()
        self.knowledge = knowledge
        self.clock = clock

        self.history = ConversationStore(max_pairs=settings.max_history_pairs)
        self.classifier = LeadClassifier(state, self.keywords, clock=clock)
        self.escalation = EscalationController(
            self.keywords,
            escalation_seconds=settings.escalation_silence_minutes * 60,
            closing_seconds=settings.closing_silence_hours * 3600,
            clock=clock,
        )
        self.override = HumanOverride(settings.human_override_minutes * 60, clock=clock)
        self.safe_mode = SafeMode(state, self.keywords, self.escalation)
        self.rate_limiter = RateLimiter(
            hot_interval_seconds=settings.rate_limit_hot_seconds,
            default_interval_seconds=settings.rate_limit_default_seconds,
            clock=clock,
        )
        self.gates = SuppressionChain(
            [self.override, HandoffSilence(self.escalation), self.safe_mode, self.rate_limiter]
        )
        self.debouncer = DebounceCoordinator(self.process_turn, wait_seconds=settings.debounce_seconds)
        self.followups = FollowUpScheduler(
            send=self._send_nudge,
            is_silenced=self.is_silenced,
            first_delay_seconds=settings.followup_first_delay_minutes * 60,
            second_delay_seconds=settings.followup_second_delay_minutes * 60,
            max_nudges=settings.followup_max_nudges,
            enabled=settings.followup_enabled,
        )

        self._addresses: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._recent_sent: Dict[str, List[Tuple[float, str]]] = {}
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReplyEngine":
        state = StateStore(Path(settings.state_file) if settings.state_file else None)
        state.load()
        provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            timeout_seconds=settings.openai_timeout_seconds,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        )
        sender = WhapiClient(
            api_key=settings.whapi_api_key,
            api_url=settings.whapi_api_url,
            timeout_seconds=settings.whapi_timeout_seconds,
        )
        return cls(
            settings=settings,
            provider=provider,
            sender=sender,
            state=state,
            keywords=load_keyword_config(settings.keywords_file),
            knowledge=load_knowledge(settings.knowledge_file),
        )

    # -- webhook entry points -------------------------------------------------

    def dispatch(self, messages: Iterable[Any]) -> int:
        """Schedule each raw webhook message as an isolated task."""
        count = 0
        for raw in messages:
            task = asyncio.create_task(self._handle_safely(raw))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            count += 1
        return count

    async def _handle_safely(self, raw: Any) -> None:
        try:
            await self.handle_message(raw)
        except Exception:
            logger.exception("Unhandled error while handling webhook message")

    async def handle_message(self, raw: Any) -> str:
        """Route one webhook message. Returns a short label for what happened."""
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object message: {type(raw).__name__}")
            return "malformed"
        try:
            message = InboundMessage(**raw)
        except ValidationError as exc:
            logger.warning(f"Skipping malformed message: {exc.error_count()} validation error(s)")
            return "malformed"

        if message.from_me:
            participant = participant_from_address(message.customer_address)
            if not participant:
                logger.warning("Outgoing message without recipient, skipping")
                return "malformed"
            return self.on_operator_message(participant, message.body)

        if not message.is_text:
            logger.info(f"Skipping unsupported message type: {message.type!r}")
            return "unsupported"

        participant = participant_from_address(message.sender)
        if not participant:
            logger.warning("Message missing 'from' field, skipping")
            return "malformed"

        text = message.body
        if not text:
            logger.warning(f"Empty or missing text body from {participant}, skipping")
            return "empty"

        log = for_participant(logger, participant)
        log.info(f"Message received: {text[:200]!r}")
        self.debouncer.submit(participant, message.sender, text)
        return "buffered"

    def on_operator_message(self, participant: str, text: str) -> str:
        log = for_participant(logger, participant)
        if text and self._consume_echo(participant, text):
            log.debug("Ignoring echo of our own reply")
            return "echo"

        until = self.override.activate(participant)
        self.followups.cancel(participant)
        self.safe_mode.record_outgoing(participant)
        log.info(
            "Operator message observed, bot silenced",
            context={"silenced_for_seconds": round(until - self.clock())},
        )
        return "operator"

    # -- turn processing ------------------------------------------------------

    def is_silenced(self, participant: str) -> bool:
        return self.override.is_active(participant) or self.escalation.active(participant) is not None

    def _lock_for(self, participant: str) -> asyncio.Lock:
        lock = self._locks.get(participant)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[participant] = lock
        return lock

    async def process_turn(self, participant: str, address: str, text: str) -> TurnOutcome:
        """Evaluate one combined turn. Turns for the same participant never overlap."""
        async with self._lock_for(participant):
            self._addresses[participant] = address
            return await self._evaluate(participant, address, text)

    async def _evaluate(self, participant: str, address: str, text: str) -> TurnOutcome:
        log = for_participant(logger, participant)
        turn = _Turn()
        turn.advance(TurnState.BATCHING)
        turn.advance(TurnState.EVALUATING)

        decision = self.gates.evaluate(
            TurnContext(participant=participant, text=text, intent=self.classifier.current(participant))
        )
        self.safe_mode.record_user_turn(participant)
        if not self.is_silenced(participant):
            self.followups.arm(participant, 1)

        if not decision.allowed:
            turn.advance(TurnState.SUPPRESSED)
            return turn.finish(reason=decision.gate)

        intent = self.classifier.classify(participant, text)
        log = log.bind(intent=intent.value)

        handoff = self.escalation.check_and_handoff(participant, text)
        if handoff is not None:
            self.followups.cancel(participant)
            self.history.append(participant, ROLE_USER, text)
            self.history.append(participant, ROLE_ASSISTANT, handoff)
            self.safe_mode.record_outgoing(participant)
            self.rate_limiter.record_reply(participant, handoff)
            delivered = await self._deliver(participant, address, handoff)
            turn.advance(TurnState.HANDOFF_SENT)
            return turn.finish(reason="handoff", reply=handoff, delivered=delivered)

        turn.advance(TurnState.GENERATING)
        self.history.append(participant, ROLE_USER, text)
        log.info("Generating reply")
        result = await generate_reply(self.provider, self.history.history(participant), intent, self.knowledge)

        if not result.ok:
            self.history.rollback_last(participant, ROLE_USER, text)
            log.error(f"Generation failed: {result.error}", context={"error_code": result.error_code})
            await alert_warning("Reply generation failed", {"participant": participant, "error": result.error})
            turn.advance(TurnState.SUPPRESSED)
            return turn.finish(reason="generation_failed")

        reply = result.value
        if self.rate_limiter.is_duplicate(participant, reply):
            log.info("Generated reply is identical to the previous one, not sending")
            turn.advance(TurnState.SUPPRESSED)
            return turn.finish(reason="duplicate_reply", reply=reply)

        self.history.append(participant, ROLE_ASSISTANT, reply)
        self.safe_mode.record_outgoing(participant)
        self.rate_limiter.record_reply(participant, reply)
        delivered = await self._deliver(participant, address, reply)
        turn.advance(TurnState.REPLIED)
        return turn.finish(reason="replied", reply=reply, delivered=delivered)

    # -- outbound ---------------------------------------------------------------

    async def _deliver(self, participant: str, address: str, text: str) -> bool:
        # Remembered before the send: the platform may echo it back as from_me
        # while the request is still in flight.
        self._remember_sent(participant, text)
        delivered = await self.sender.send_text(address, text)
        if not delivered:
            logger.error("Reply not delivered", extra={"context": {"participant": participant}})
        return delivered

    async def _send_nudge(self, participant: str, text: str) -> bool:
        # Same lock as turns: a nudge must not land between a speculative
        # user turn and its rollback.
        async with self._lock_for(participant):
            if self.is_silenced(participant) or self.followups.is_armed(participant):
                logger.info("Follow-up dropped, conversation moved on", extra={"context": {"participant": participant}})
                return False
            address = self._addresses.get(participant)
            if not address:
                logger.warning(f"No chat address known for {participant}, follow-up dropped")
                return False
            self.history.append(participant, ROLE_ASSISTANT, text)
            return await self._deliver(participant, address, text)

    def _remember_sent(self, participant: str, text: str) -> None:
        now = self.clock()
        window = self.settings.operator_echo_seconds
        recent = [(ts, sent) for ts, sent in self._recent_sent.get(participant, []) if now - ts <= window]
        recent.append((now, text))
        self._recent_sent[participant] = recent

    def _consume_echo(self, participant: str, text: str) -> bool:
        now = self.clock()
        window = self.settings.operator_echo_seconds
        recent = [(ts, sent) for ts, sent in self._recent_sent.get(participant, []) if now - ts <= window]
        for index, (_, sent) in enumerate(recent):
            if sent.strip() == text.strip():
                del recent[index]
                self._recent_sent[participant] = recent
                return True
        self._recent_sent[participant] = recent
        return False

    async def shutdown(self) -> None:
        await self.debouncer.shutdown()
        await self.followups.shutdown()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.provider.aclose()
        await self.sender.aclose()
        self.state.save()
