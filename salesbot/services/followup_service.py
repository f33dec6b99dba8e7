import asyncio
from typing import Awaitable, Callable, Dict, Optional

from salesbot.logging_config import get_logger
from salesbot.services.stores import KeyValueStore, MemoryStore

logger = get_logger("followup_service")

FOLLOWUP_MESSAGES = {
    1: "Hi! 👋 Just checking in, do you still need help with your order? I'm here if you have any questions. 😊",
    2: "Hello again! 🙂 Our offer is still open. Reply anytime and I'll help you place your order right away.",
}


class FollowUpScheduler:
    """Two-stage re-engagement nudges after participant inactivity.

    Any qualifying activity re-arms stage 1 and drops whatever was pending.
    A fired stage 1 immediately arms stage 2. The total number of nudges per
    participant never exceeds ``max_nudges``.
    """

    def __init__(
        self,
        send: Callable[[str, str], Awaitable[bool]],
        is_silenced: Callable[[str], bool],
        first_delay_seconds: float,
        second_delay_seconds: float,
        max_nudges: int = 2,
        enabled: bool = True,
        counts: Optional[KeyValueStore[int]] = None,
    ):
        self.send = send
        self.is_silenced = is_silenced
        self.delays = {1: first_delay_seconds, 2: second_delay_seconds}
        self.max_nudges = max_nudges
        self.enabled = enabled
        self.counts = counts if counts is not None else MemoryStore()
        self._timers: Dict[str, asyncio.Task] = {}

    def nudges_sent(self, participant: str) -> int:
        return self.counts.get(participant) or 0

    def is_armed(self, participant: str) -> bool:
        task = self._timers.get(participant)
        return task is not None and not task.done()

    def arm(self, participant: str, stage: int = 1) -> bool:
        self.cancel(participant)
        if not self.enabled or stage not in self.delays:
            return False
        if self.nudges_sent(participant) >= self.max_nudges:
            return False

        self._timers[participant] = asyncio.create_task(
            self._fire(participant, stage),
            name=f"followup:{participant}:{stage}",
        )
        return True

    def cancel(self, participant: str) -> None:
        task = self._timers.pop(participant, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _fire(self, participant: str, stage: int) -> None:
        try:
            await asyncio.sleep(self.delays[stage])
        except asyncio.CancelledError:
            return

        if self._timers.get(participant) is asyncio.current_task():
            del self._timers[participant]

        try:
            if self.is_silenced(participant):
                logger.info(f"Follow-up stage {stage} skipped, conversation silenced", extra={"context": {"participant": participant}})
                return
            sent_count = self.nudges_sent(participant)
            if sent_count >= self.max_nudges:
                return

            # Counted even when delivery fails: nudges are at-most-once.
            self.counts.set(participant, sent_count + 1)
            delivered = await self.send(participant, FOLLOWUP_MESSAGES[stage])
            logger.info(
                f"Follow-up stage {stage} {'sent' if delivered else 'failed'}",
                extra={"context": {"participant": participant, "nudges_sent": sent_count + 1}},
            )

            # Activity during the send has already re-armed stage 1.
            if stage == 1 and participant not in self._timers:
                self.arm(participant, 2)
        except Exception:
            logger.exception("Follow-up failed", extra={"context": {"participant": participant, "stage": stage}})

    async def shutdown(self) -> None:
        tasks = [task for task in self._timers.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
