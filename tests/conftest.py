import hashlib
import os
import re
import sys
from datetime import datetime, timezone

import pytest

# Force integration tests to use in-process Qdrant and keep the suite offline
os.environ.setdefault("KS_QDRANT_URL", ":memory:")
os.environ.setdefault("KS_EMBEDDING_PROVIDER", "none")
os.environ.setdefault("KS_ORACLE_ENABLED", "false")

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from knowledge_service.bootstrap import build_knowledge_store  # noqa: E402
from knowledge_service.clock import ManualClock  # noqa: E402
from knowledge_service.config import Settings  # noqa: E402
from knowledge_service.gateways.notification import (  # noqa: E402
    DeliveryResult,
    OwnerChannel,
    StaticChannelDirectory,
)
from knowledge_service.models.decisions import CreateVerdict  # noqa: E402
from knowledge_service.models.knowledge import OwnerContext  # noqa: E402
from knowledge_service.storage.memory_store import InMemoryStorage  # noqa: E402

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashEmbedder:
    """Deterministic bag-of-words embedder: shared words mean higher cosine similarity."""

    def __init__(self, dimensions: int = 16):
        self.dimensions = dimensions
        self.calls: list[str] = []
        self.fail = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        tokens = _TOKEN_RE.findall((text or "").lower())
        if not tokens:
            return []
        vector = [0.0] * self.dimensions
        for token in tokens:
            digest = hashlib.md5(token.encode()).digest()
            vector[digest[0] % self.dimensions] += 1.0
        return vector


class StubOracle:
    """Returns a fixed verdict (or raises) and records every request."""

    def __init__(self, verdict=None, error: Exception | None = None):
        self.verdict = verdict or CreateVerdict(confidence=0.9, reasoning="different topic")
        self.error = error
        self.requests = []

    async def resolve(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.verdict


class RecordingNotifier:
    """Captures deliveries; chat ids listed in ``failing`` get a failed result."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.sent: list[tuple[OwnerChannel, str]] = []

    async def deliver(self, channel: OwnerChannel, text: str) -> DeliveryResult:
        if channel.chat_id in self.failing:
            return DeliveryResult.failed("chat blocked the bot")
        self.sent.append((channel, text))
        return DeliveryResult.ok(message_id=str(len(self.sent)))


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def owner():
    return OwnerContext(owner_id="alice", project_id="home", display_name="Alice")


@pytest.fixture
def other_owner():
    return OwnerContext(owner_id="bob", project_id="home")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def channels():
    return StaticChannelDirectory("telegram", chats={"alice": "chat-alice", "bob": "chat-bob"})


@pytest.fixture
def test_settings():
    settings = Settings()
    settings.storage.backend = "memory"
    settings.embedding.dimensions = 16
    settings.scheduler.instance_id = "test-scheduler"
    return settings


@pytest.fixture
def make_store(test_settings, storage, embedder, notifier, channels, clock):
    """Factory so tests can swap a single collaborator (usually the oracle)."""

    def _make(oracle=None, **overrides):
        kwargs = dict(
            storage=storage,
            embedder=embedder,
            oracle=oracle,
            notifier=notifier,
            channels=channels,
            clock=clock,
        )
        kwargs.update(overrides)
        return build_knowledge_store(test_settings, **kwargs)

    return _make


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def stub_oracle():
    """Factory for ``StubOracle`` instances."""
    return StubOracle


@pytest.fixture
def recording_notifier():
    """Factory for ``RecordingNotifier`` instances."""
    return RecordingNotifier
