from ember.memory.hashing import normalize_content, content_hash, count_tokens
from ember.memory.dedup import DedupOutcome, save_candidate
from ember.memory.wake import build_wake_prompt

__all__ = [
    "normalize_content",
    "content_hash",
    "count_tokens",
    "DedupOutcome",
    "save_candidate",
    "build_wake_prompt",
]
