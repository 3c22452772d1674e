"""
Wake prompts.

A wake prompt replays a profile's memories into a fresh conversation so
an assistant starts out knowing the person. Memories are taken in
importance order until the token budget is spent.
"""
import uuid
from dataclasses import dataclass, field
from typing import Optional, Union

from ember.config import settings
from ember.memory.hashing import count_tokens
from ember.models.memory import Memory, MemoryCategory
from ember.repository import list_memories
from ember.tenant import coerce_profile_id, tenant_session

MIN_BUDGET = 1000
MAX_BUDGET = 32000

HEADER = (
    "The following are memories about the person you are talking with, "
    "grouped by topic. Treat them as things you already know.\n"
)

CATEGORY_TITLES = {
    MemoryCategory.EMOTIONAL: "Emotional context",
    MemoryCategory.WORK: "Work",
    MemoryCategory.HOBBIES: "Hobbies and interests",
    MemoryCategory.RELATIONSHIPS: "Relationships",
    MemoryCategory.PREFERENCES: "Preferences",
}


@dataclass
class WakePrompt:
    prompt: str
    token_count: int
    memory_count: int
    categories: list[MemoryCategory] = field(default_factory=list)


def _render_line(memory: Memory) -> str:
    line = f"- {memory.factual_content}"
    if memory.emotional_significance:
        line += f" (why it matters: {memory.emotional_significance})"
    if memory.prompt_text and memory.prompt_text != memory.factual_content:
        line += f'\n  In their words: "{memory.prompt_text}"'
    return line


def render_wake_prompt(memories: list[Memory], budget: int) -> WakePrompt:
    """Greedy fill: most important memories first, skipping any that would overflow the budget."""
    used = count_tokens(HEADER)
    chosen: dict[MemoryCategory, list[str]] = {}
    count = 0
    for memory in memories:
        line = _render_line(memory)
        # Section titles cost a little too; charge them on first use
        title_cost = 0 if memory.category in chosen else count_tokens(CATEGORY_TITLES[memory.category]) + 2
        cost = count_tokens(line) + title_cost
        if used + cost > budget:
            continue
        chosen.setdefault(memory.category, []).append(line)
        used += cost
        count += 1

    sections = [HEADER]
    for category in MemoryCategory:
        if category in chosen:
            sections.append(f"## {CATEGORY_TITLES[category]}\n" + "\n".join(chosen[category]))
    prompt = "\n".join(sections)
    return WakePrompt(
        prompt=prompt,
        token_count=count_tokens(prompt),
        memory_count=count,
        categories=[c for c in MemoryCategory if c in chosen],
    )


def build_wake_prompt(
    profile_id: Union[uuid.UUID, str],
    categories: list[MemoryCategory],
    budget: Optional[int] = None,
) -> WakePrompt:
    budget = settings.DEFAULT_TOKEN_BUDGET if budget is None else budget
    if not categories:
        raise ValueError("Select at least one category")
    if not MIN_BUDGET <= budget <= MAX_BUDGET:
        raise ValueError(f"Budget must be between {MIN_BUDGET} and {MAX_BUDGET} tokens")

    pid = coerce_profile_id(profile_id)
    with tenant_session(pid) as session:
        memories = list_memories(session, pid, categories=categories)
    return render_wake_prompt(memories, budget)
