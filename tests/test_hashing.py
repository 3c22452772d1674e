import hashlib

from ember.memory.hashing import content_hash, count_tokens, normalize_content
from ember.models.memory import MemoryCategory


def test_normalize_content():
    assert normalize_content("  Loves   Hiking\n\tIn  Spring ") == "loves hiking in spring"
    assert normalize_content("already normal") == "already normal"


def test_hash_is_truncated_sha256_of_content_and_category():
    expected = hashlib.sha256(b"loves hiking|hobbies").hexdigest()[:16]
    assert content_hash("Loves hiking", "hobbies") == expected
    assert len(expected) == 16


def test_hash_ignores_case_and_whitespace():
    a = content_hash("Started a new job at  the climbing gym", "work")
    b = content_hash("  started a NEW job at the climbing gym\n", "work")
    assert a == b


def test_hash_depends_on_category():
    assert content_hash("Sam is supportive", "relationships") != content_hash("Sam is supportive", "emotional")


def test_hash_accepts_enum_category():
    assert content_hash("Sam is supportive", MemoryCategory.RELATIONSHIPS) == content_hash(
        "Sam is supportive", "relationships"
    )


def test_count_tokens():
    assert count_tokens("") == 0
    assert count_tokens("abcd") == 1
    assert count_tokens("abcde") == 2
