import os

os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("WHAPI_API_KEY", "test-whapi-key")
os.environ.pop("ALERT_BOT_TOKEN", None)
os.environ.pop("ALERT_CHAT_ID", None)

from typing import Callable, List, Optional  # noqa: E402

import pytest  # noqa: E402

from salesbot.config import Settings  # noqa: E402
from salesbot.services.llm import LLMProvider, LLMResponse  # noqa: E402
from salesbot.services.reply_service import ReplyEngine  # noqa: E402
from salesbot.services.state_store import StateStore  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(LLMProvider):
    """Returns queued replies in order, then numbered defaults; a queued exception is raised."""

    def __init__(self, replies: Optional[list] = None, default: str = "Hello! 👋 How can I help you?"):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[List[dict]] = []

    async def generate(self, messages, model=None, temperature=None, max_tokens=None) -> LLMResponse:
        self.calls.append([dict(m) for m in messages])
        reply = self.replies.pop(0) if self.replies else f"{self.default} ({len(self.calls)})"
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, model="fake")


class FakeSender:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: List[tuple] = []

    async def send_text(self, to_address: str, text: str) -> bool:
        self.sent.append((to_address, text))
        return self.ok

    async def aclose(self) -> None:
        pass


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "openai_api_key": "test-openai-key",
        "whapi_api_key": "test-whapi-key",
        "debounce_seconds": 0.02,
        "followup_enabled": False,
        "state_file": str(tmp_path / "state.json"),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def state(tmp_path):
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def engine_factory(tmp_path, provider, sender, state, clock) -> Callable[..., ReplyEngine]:
    def _build(**overrides) -> ReplyEngine:
        return ReplyEngine(
            settings=make_settings(tmp_path, **overrides),
            provider=provider,
            sender=sender,
            state=state,
            clock=clock,
        )

    return _build


@pytest.fixture
def engine(engine_factory):
    return engine_factory()


