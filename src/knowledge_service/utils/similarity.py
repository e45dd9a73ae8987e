"""
Similarity helpers shared by storage backends and the deduplication arbiter.

Cosine similarity drives vector-nearest lookups in the in-memory store;
difflib's fuzzy ratio ranks existing items against a candidate when the
oracle does not name a target.
"""

from __future__ import annotations

from difflib import SequenceMatcher
from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    mag = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if mag == 0.0:
        return 0.0
    return float(np.dot(va, vb) / mag)


def fuzzy_similarity(text_a: str, text_b: str) -> float:
    """Compute fuzzy text similarity using difflib SequenceMatcher."""
    return SequenceMatcher(None, text_a.lower(), text_b.lower()).ratio()
