"""Query token extraction for tag-overlap search."""

import re

from ..models.validators import normalize_tag

# Articles, prepositions, pronouns and generic connectives. Tokens in this set
# never reach tag matching, so a legitimate tag spelled like one of them is only
# found through text or semantic search.
STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "about", "after", "all", "also", "an", "and", "any", "are", "as", "at",
        "be", "been", "before", "but", "by", "can", "could", "did", "do", "does",
        "for", "from", "had", "has", "have", "her", "him", "his", "how", "i", "if",
        "in", "into", "is", "it", "its", "just", "me", "my", "no", "not", "of", "on",
        "or", "our", "out", "over", "she", "should", "so", "some", "than", "that",
        "the", "their", "them", "then", "there", "these", "they", "this", "those",
        "to", "too", "under", "up", "was", "we", "were", "what", "when", "where",
        "which", "while", "who", "why", "will", "with", "would", "you", "your",
    }
)

_SEGMENT_SPLIT_RE = re.compile(r"[,;/|]+")


def extract_query_tags(query: str, min_length: int = 3) -> list[str]:
    """Turn a free-text query into candidate tags.

    Tokens are normalised the same way stored tags are, must be at least
    ``min_length`` characters long, and must not be stop words. Adjacent words
    are also joined with ``-`` so that a query for "project manager" reaches
    the stored tag ``project-manager``.

    Args:
        query: Search query
        min_length: Minimum token length (default 3, i.e. longer than 2)

    Returns:
        Deduplicated single-word tokens in query order, then word pairs
    """
    seen: set[str] = set()
    tokens: list[str] = []
    pairs: list[str] = []
    for segment in _SEGMENT_SPLIT_RE.split(query or ""):
        words = [normalize_tag(raw) for raw in segment.split()]
        for word in words:
            if len(word) < min_length or word in STOP_WORDS or word in seen:
                continue
            seen.add(word)
            tokens.append(word)
        for first, second in zip(words, words[1:]):
            if not first or not second or first in STOP_WORDS or second in STOP_WORDS:
                continue
            pair = f"{first}-{second}"
            if len(pair) >= min_length and pair not in seen:
                seen.add(pair)
                pairs.append(pair)
    return tokens + pairs
