from .base import KnowledgeStorage
from .factory import create_storage_instance
from .memory_store import InMemoryStorage
from .query import ArrayOverlaps, Contains, Equals, Query, Range, VectorNearest

__all__ = [
    "ArrayOverlaps",
    "Contains",
    "Equals",
    "InMemoryStorage",
    "KnowledgeStorage",
    "Query",
    "Range",
    "VectorNearest",
    "create_storage_instance",
]
