"""Tests for the high-level LLM call helpers and prompt rendering."""

from datetime import datetime, timezone

import pytest

from meadowloop.llm_calls import (
    ACTION_SYSTEM_PROMPT,
    build_action_prompts,
    consolidate_memories,
    get_character_action,
    summarize_memories,
)
from meadowloop.schemas import (
    ActionDecision,
    CharacterContext,
    CharacterProfile,
    ConsolidationResult,
    ConversationExcerpt,
    ConversationLine,
    Injection,
    Memory,
    MemoryDigest,
    NearbyCharacter,
    Position,
    Relationship,
)


def make_profile() -> CharacterProfile:
    return CharacterProfile(
        id="maria",
        name="Maria",
        age=42,
        occupation="Baker",
        desires=["Keep the bakery busy"],
        relationships=[Relationship(target_id="tom", target_name="Tom", type="neighbor", affinity=20)],
    )


def make_context(**fields) -> CharacterContext:
    return CharacterContext(
        character_id="maria",
        tick=7,
        timestamp=datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc),
        position=Position(x=17, y=16, zone="bakery"),
        location_name="Bakery",
        **fields,
    )


def test_prompts_with_caching_put_profile_in_system_prompt():
    system_prompt, user_prompt = build_action_prompts(make_profile(), make_context(), caching=True)

    assert system_prompt.startswith(ACTION_SYSTEM_PROMPT)
    assert "CHARACTER: Maria, 42, Baker" in system_prompt
    assert "- Tom: neighbor (affinity 20)" in system_prompt
    assert "CHARACTER: Maria" not in user_prompt
    assert "Location: Bakery (17, 16)" in user_prompt


def test_prompts_without_caching_keep_system_prompt_static():
    system_prompt, user_prompt = build_action_prompts(make_profile(), make_context(), caching=False)

    assert system_prompt == ACTION_SYSTEM_PROMPT
    assert user_prompt.startswith("CHARACTER: Maria")


def test_context_sections_render_when_present():
    context = make_context(
        nearby_characters=[NearbyCharacter(id="tom", name="Tom", emotion="calm", distance=2)],
        conversation_priority="Tom",
        ongoing_conversation=ConversationExcerpt(
            id="conv",
            participants=["Tom", "Maria"],
            recent_messages=[ConversationLine(speaker="Tom", content="Morning!", emotion="happy")],
        ),
        injection=Injection(target="maria", content="The oven is broken"),
        key_memories=["Baked a cake for Lily"],
        available_zones=["Bakery", "Town Park"],
    )

    _, user_prompt = build_action_prompts(make_profile(), context, caching=True)

    assert "SCENARIO EVENT: The oven is broken" in user_prompt
    assert "CONVERSATION PRIORITY: Tom just spoke nearby." in user_prompt
    assert "- Tom (calm, 2 tiles away)" in user_prompt
    assert "- Tom (happy): Morning!" in user_prompt
    assert "- Baked a cake for Lily" in user_prompt
    assert "Places you can go: Bakery, Town Park" in user_prompt


def test_summary_replaces_key_memories_in_prompt():
    context = make_context(memory_summary="Maria loves her bakery.", key_memories=["ignored"])

    _, user_prompt = build_action_prompts(make_profile(), context, caching=True)

    assert "Memory summary: Maria loves her bakery." in user_prompt
    assert "ignored" not in user_prompt


@pytest.mark.asyncio
async def test_get_character_action_delegates_to_retry_helper(monkeypatch):
    captured = {}

    async def fake_call_llm_with_retries(**kwargs):
        captured.update(kwargs)
        return ActionDecision(action="speak", dialogue="Fresh bread!", emotion="happy")

    monkeypatch.setattr("meadowloop.llm_calls.call_llm_with_retries", fake_call_llm_with_retries)

    result = await get_character_action(
        make_profile(), make_context(), "anthropic", "claude-3-5-haiku-latest", timeout=12
    )

    assert result.dialogue == "Fresh bread!"
    assert captured["llm_provider"] == "anthropic"
    assert captured["llm_model"] == "claude-3-5-haiku-latest"
    assert captured["response_model"] is ActionDecision
    assert captured["timeout"] == 12


@pytest.mark.asyncio
async def test_memory_digest_calls(monkeypatch):
    captured = []

    async def fake_call_llm_with_retries(**kwargs):
        captured.append(kwargs)
        if kwargs["response_model"] is MemoryDigest:
            return MemoryDigest(summary="  A busy week.  ")
        return ConsolidationResult(consolidated_memory="A busy week at the bakery.", tags=["Work"])

    monkeypatch.setattr("meadowloop.llm_calls.call_llm_with_retries", fake_call_llm_with_retries)
    memories = [Memory(content="Sold out of croissants", emotional_weight=70)]

    summary = await summarize_memories("Maria", memories, "openai", "gpt-4o-mini")
    result = await consolidate_memories("Maria", memories, "openai", "gpt-4o-mini")

    assert summary == "A busy week."
    assert result.tags == ["work"]
    assert "- [Impact: 70] Sold out of croissants" in captured[0]["user_prompt"]
    assert "Maria" in captured[1]["system_prompt"]
