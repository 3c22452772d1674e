import pytest

from ember.memory.dedup import save_candidate
from ember.memory.hashing import count_tokens
from ember.memory.wake import HEADER, build_wake_prompt, render_wake_prompt
from ember.models.memory import Memory, MemoryCategory
from ember.tenant import tenant_session


def _memory(content, category=MemoryCategory.WORK, importance=3, significance=None) -> Memory:
    return Memory(
        profile_id=None,
        category=category,
        factual_content=content,
        emotional_significance=significance,
        verbatim_text=content,
        importance=importance,
        verbatim_tokens=count_tokens(content),
    )


def test_render_groups_by_category():
    result = render_wake_prompt(
        [
            _memory("Works as a nurse", importance=5),
            _memory("Partner Sam", category=MemoryCategory.RELATIONSHIPS, significance="Feels supported"),
        ],
        budget=8000,
    )
    assert result.prompt.startswith(HEADER)
    assert "## Work\n- Works as a nurse" in result.prompt
    assert "## Relationships\n- Partner Sam (why it matters: Feels supported)" in result.prompt
    assert result.memory_count == 2
    assert result.categories == [MemoryCategory.WORK, MemoryCategory.RELATIONSHIPS]
    assert result.token_count == count_tokens(result.prompt)


def test_render_skips_what_does_not_fit():
    big = _memory("x" * 400, importance=5)
    small = _memory("Plays the cello", category=MemoryCategory.HOBBIES, importance=1)
    budget = count_tokens(HEADER) + 20

    result = render_wake_prompt([big, small], budget=budget)
    assert result.memory_count == 1
    assert "Plays the cello" in result.prompt
    assert "x" * 400 not in result.prompt
    assert result.token_count <= budget


def test_verbatim_quote_is_included_when_it_differs():
    memory = _memory("Starting at the climbing gym")
    memory.verbatim_text = "I start at the climbing gym next month"
    result = render_wake_prompt([memory], budget=8000)
    assert 'In their words: "I start at the climbing gym next month"' in result.prompt


def test_build_uses_only_selected_categories_of_own_profile(profile_a, profile_b, candidate):
    with tenant_session(profile_a) as session:
        save_candidate(session, profile_a, None, candidate("Works as a nurse", importance=5))
        save_candidate(session, profile_a, None, candidate("Plays the cello", category="hobbies"))
    with tenant_session(profile_b) as session:
        save_candidate(session, profile_b, None, candidate("Runs a bakery", importance=5))

    result = build_wake_prompt(profile_a, [MemoryCategory.WORK])
    assert "Works as a nurse" in result.prompt
    assert "Plays the cello" not in result.prompt
    assert "Runs a bakery" not in result.prompt
    assert result.memory_count == 1


@pytest.mark.parametrize("budget", [999, 32001])
def test_budget_out_of_range(profile_a, budget):
    with pytest.raises(ValueError):
        build_wake_prompt(profile_a, [MemoryCategory.WORK], budget=budget)


def test_categories_required(profile_a):
    with pytest.raises(ValueError):
        build_wake_prompt(profile_a, [])
