"""
Composition root.

Every component is constructed exactly once here and handed its
collaborators explicitly. The HTTP app, the MCP server and the CLI all start
from ``create_application``; tests call ``build_knowledge_store`` with fakes.
"""

import logging
from dataclasses import dataclass

from .clock import Clock, SystemClock
from .config import Settings
from .gateways.embedding import EmbeddingGateway, create_embedding_gateway
from .gateways.notification import ChannelDirectory, NotificationPort, create_notifier
from .gateways.oracle import AnthropicDecisionOracle, DecisionOracle
from .services.deduplication import DeduplicationArbiter
from .services.knowledge_store import KnowledgeStore
from .services.memory_writer import MemoryWriter
from .services.scheduler import ReminderScheduler
from .services.search_engine import HybridSearchEngine
from .storage.base import KnowledgeStorage
from .storage.factory import create_storage_instance

logger = logging.getLogger(__name__)


def create_oracle(settings: Settings) -> DecisionOracle | None:
    """The configured decision oracle, or None when disabled or unkeyed."""
    oracle_settings = settings.oracle
    if not oracle_settings.enabled:
        logger.info("Decision oracle disabled; similar memories will always be created")
        return None
    if not oracle_settings.api_key:
        logger.warning("KS_ORACLE_API_KEY not set; decision oracle disabled")
        return None
    return AnthropicDecisionOracle(
        api_key=oracle_settings.api_key,
        model=oracle_settings.model,
        base_url=oracle_settings.base_url,
        timeout_ms=oracle_settings.timeout_ms,
        max_tokens=oracle_settings.max_tokens,
        temperature=oracle_settings.temperature,
    )


def build_knowledge_store(
    settings: Settings,
    storage: KnowledgeStorage,
    embedder: EmbeddingGateway | None = None,
    oracle: DecisionOracle | None = None,
    notifier: NotificationPort | None = None,
    channels: ChannelDirectory | None = None,
    clock: Clock | None = None,
) -> KnowledgeStore:
    """Wire the engine around an already-initialized storage backend.

    Collaborators not supplied are built from ``settings``. Pass ``oracle``
    explicitly to override; when omitted the configured one is used.
    """
    clock = clock or SystemClock()
    embedder = embedder or create_embedding_gateway(settings.embedding)
    if oracle is None:
        oracle = create_oracle(settings)
    if notifier is None or channels is None:
        default_notifier, default_channels = create_notifier(settings.notification, clock=clock)
        notifier = notifier or default_notifier
        channels = channels or default_channels

    max_chars = settings.embedding.max_chars
    search_engine = HybridSearchEngine(storage, embedder, settings.search)
    writer = MemoryWriter(storage, embedder, clock=clock, max_chars=max_chars)
    arbiter = DeduplicationArbiter(search_engine, writer, oracle=oracle, dedup_settings=settings.dedup)
    scheduler = ReminderScheduler(storage, notifier, channels, clock=clock, scheduler_settings=settings.scheduler)

    return KnowledgeStore(
        storage=storage,
        embedder=embedder,
        search_engine=search_engine,
        writer=writer,
        arbiter=arbiter,
        scheduler=scheduler,
        clock=clock,
        max_embedding_chars=max_chars,
    )


@dataclass
class Application:
    """Process-wide components, created once at startup."""

    settings: Settings
    storage: KnowledgeStorage
    store: KnowledgeStore

    @property
    def scheduler(self) -> ReminderScheduler:
        return self.store.scheduler

    async def close(self) -> None:
        """Stop the poll loop and close storage. Safe to call more than once."""
        try:
            await self.scheduler.stop()
        except Exception as e:
            logger.warning(f"Error stopping reminder scheduler: {e}")
        try:
            await self.storage.close()
        except Exception as e:
            logger.error(f"Error closing storage: {e}")


async def create_application(settings: Settings, clock: Clock | None = None) -> Application:
    """Create storage from settings and wire the full engine around it."""
    logger.info("Initializing knowledge service...")
    storage = await create_storage_instance(settings.storage, settings.embedding.dimensions)
    store = build_knowledge_store(settings, storage, clock=clock)
    logger.info(f"Knowledge service initialized with {type(storage).__name__}")
    return Application(settings=settings, storage=storage, store=store)
