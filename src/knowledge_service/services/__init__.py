from .deduplication import DeduplicationArbiter
from .knowledge_store import KnowledgeStore
from .memory_writer import MemoryWriter
from .scheduler import ReminderScheduler
from .search_engine import HybridSearchEngine

__all__ = ["DeduplicationArbiter", "HybridSearchEngine", "KnowledgeStore", "MemoryWriter", "ReminderScheduler"]
