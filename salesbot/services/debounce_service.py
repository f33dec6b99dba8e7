import asyncio
from typing import Awaitable, Callable, Dict, List

from salesbot.logging_config import get_logger

logger = get_logger("debounce_service")

FlushHandler = Callable[[str, str, str], Awaitable[object]]


class DebounceCoordinator:
    """Coalesce bursts of messages from one participant into a single turn.

    Each inbound text is appended to the participant's batch and the flush
    timer is restarted. When the timer runs out the batch is joined with a
    space and handed to ``handler(participant, address, combined_text)``
    exactly once. In-flight batches are not durable.
    """

    def __init__(self, handler: FlushHandler, wait_seconds: float, separator: str = " "):
        self.handler = handler
        self.wait_seconds = wait_seconds
        self.separator = separator
        self._batches: Dict[str, List[str]] = {}
        self._addresses: Dict[str, str] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    def submit(self, participant: str, address: str, text: str) -> int:
        """Add text to the batch and re-arm the timer. Returns the batch size."""
        batch = self._batches.setdefault(participant, [])
        batch.append(text)
        self._addresses[participant] = address

        pending = self._timers.get(participant)
        if pending is not None and not pending.done():
            pending.cancel()

        self._timers[participant] = asyncio.create_task(
            self._wait_and_flush(participant),
            name=f"debounce:{participant}",
        )
        logger.debug(f"Buffered message {len(batch)} for {participant}")
        return len(batch)

    def pending(self, participant: str) -> List[str]:
        return list(self._batches.get(participant, []))

    def has_pending(self, participant: str) -> bool:
        return participant in self._timers

    async def _wait_and_flush(self, participant: str) -> None:
        try:
            await asyncio.sleep(self.wait_seconds)
        except asyncio.CancelledError:
            return

        # Detach before awaiting the handler so a new message starts a new
        # cycle instead of cancelling this flush.
        current = asyncio.current_task()
        if self._timers.get(participant) is current:
            del self._timers[participant]
        if current is not None:
            self._running.add(current)

        texts = self._batches.pop(participant, [])
        address = self._addresses.pop(participant, participant)
        if not texts:
            return

        combined = self.separator.join(texts)
        logger.info(
            f"Flushing {len(texts)} buffered message(s)",
            extra={"context": {"participant": participant}},
        )
        try:
            await self.handler(participant, address, combined)
        except Exception:
            logger.exception("Debounced turn failed", extra={"context": {"participant": participant}})
        finally:
            if current is not None:
                self._running.discard(current)

    async def shutdown(self) -> None:
        tasks = [task for task in list(self._timers.values()) + list(self._running) if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._batches.clear()
        self._addresses.clear()
