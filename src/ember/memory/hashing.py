import hashlib
import math
import re

HASH_LENGTH = 16

_WHITESPACE = re.compile(r"\s+")


def normalize_content(text: str) -> str:
    """Lowercase, trim and collapse whitespace runs to a single space."""
    return _WHITESPACE.sub(" ", text.lower().strip())


def content_hash(factual_content: str, category: str) -> str:
    """
    Deterministic dedup key for a memory.

    SHA-256 over the normalized content and the category, truncated to
    16 hex characters. Collisions at this length are accepted as negligible.
    """
    category = getattr(category, "value", category)
    payload = f"{normalize_content(factual_content)}|{category}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def count_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token), good enough for budgets."""
    return math.ceil(len(text) / 4)
