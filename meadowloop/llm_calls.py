"""
LLM call functions for character decisions and memory digests.

This module provides:
- Character action generation (get_character_action)
- Memory summarization (summarize_memories)
- Memory consolidation (consolidate_memories)

All functions are stateless: prompts are rendered from the arguments and the
structured response is validated by the pydantic response model. Transport,
retries and timeouts live in ``llm_utils``.
"""

from typing import Sequence, Tuple

from meadowloop.logging_utils import llm_debug_enabled
from meadowloop.schemas import (
    ActionDecision,
    CharacterContext,
    CharacterProfile,
    ConsolidationResult,
    Memory,
    MemoryDigest,
)
from .llm_utils import LLM_TIMEOUT_SECONDS, call_llm_with_retries


ACTION_SYSTEM_PROMPT = """You are simulating the inner life of one character in a small pixel-art town called MeadowLoop.

Each moment, decide what the character thinks, how they feel, and what they do next.
Stay true to their MBTI type, Big Five traits, mental health, desires, memories and relationships.

- If CONVERSATION PRIORITY is present, someone nearby just spoke: strongly consider replying.
- If an ONGOING CONVERSATION is listed, stay engaged unless the character has reason to leave.
- Movement is purposeful: go to a zone for a reason, or approach someone to talk.
- Staying idle is fine when the character has reason to stay put.
- If a SCENARIO EVENT is present, fold it into the character's reasoning.

Respond with JSON only:
{
  "internal_thoughts": "private monologue",
  "emotion": "one word",
  "action_reasoning": "why this action",
  "action": "speak | approach_character | move_to_zone | stay_idle",
  "dialogue": "spoken words, or null when not speaking",
  "movement_command": {"command": "move_to_zone | approach_character | stay_idle", "target": "zone or character name, or null"}
}"""


# ============================================================================
# Prompt rendering
# ============================================================================


def render_character_profile(profile: CharacterProfile) -> str:
    traits = profile.big_five
    lines = [
        f"CHARACTER: {profile.name}"
        + (f", {profile.age}" if profile.age is not None else "")
        + (f", {profile.occupation}" if profile.occupation else ""),
        f"MBTI: {profile.mbti}",
        (
            "Big Five: "
            f"openness {traits.openness}, conscientiousness {traits.conscientiousness}, "
            f"extraversion {traits.extraversion}, agreeableness {traits.agreeableness}, "
            f"neuroticism {traits.neuroticism}"
        ),
    ]
    if profile.description:
        lines.append(f"About: {profile.description}")
    if profile.desires:
        lines.append("Desires: " + "; ".join(profile.desires))
    if profile.mental_health:
        lines.append("Mental health: " + "; ".join(profile.mental_health))
    if profile.relationships:
        lines.append("Relationships:")
        for relationship in profile.relationships:
            label = relationship.target_name or relationship.target_id or "someone"
            lines.append(f"- {label}: {relationship.type} (affinity {relationship.affinity})")
    return "\n".join(lines)


def render_context(context: CharacterContext) -> str:
    lines = [
        f"TICK {context.tick} at {context.timestamp.isoformat(timespec='seconds')}",
        f"Location: {context.location_name or 'open ground'} ({context.position.x}, {context.position.y})",
        f"Feeling: {context.current_emotion}",
    ]
    if context.environment:
        lines.append(f"Environment: {context.environment}")

    if context.injection is not None:
        lines.append(f"\nSCENARIO EVENT: {context.injection.content}")

    if context.conversation_priority:
        lines.append(
            f"\nCONVERSATION PRIORITY: {context.conversation_priority} just spoke nearby."
        )

    if context.nearby_characters:
        lines.append("\nNearby:")
        lines.extend(
            f"- {c.name} ({c.emotion}, {c.distance} tiles away)" for c in context.nearby_characters
        )
    else:
        lines.append("\nNobody is nearby.")

    if context.ongoing_conversation is not None:
        excerpt = context.ongoing_conversation
        lines.append(f"\nONGOING CONVERSATION with {', '.join(excerpt.participants)}:")
        lines.extend(f"- {m.speaker} ({m.emotion}): {m.content}" for m in excerpt.recent_messages)

    if context.recent_events:
        lines.append("\nRecent events:")
        lines.extend(f"- {summary}" for summary in context.recent_events)

    if context.memory_summary:
        lines.append(f"\nMemory summary: {context.memory_summary}")
    elif context.key_memories:
        lines.append("\nKey memories:")
        lines.extend(f"- {content}" for content in context.key_memories)

    if context.available_zones:
        lines.append("\nPlaces you can go: " + ", ".join(context.available_zones))

    return "\n".join(lines)


def build_action_prompts(
    profile: CharacterProfile,
    context: CharacterContext,
    *,
    caching: bool,
) -> Tuple[str, str]:
    """Return (system_prompt, user_prompt).

    With caching on, the profile sits in the system prompt so every request
    for this character shares an identical prefix; otherwise it leads the
    user prompt.
    """

    profile_block = render_character_profile(profile)
    context_block = render_context(context)
    if caching:
        return f"{ACTION_SYSTEM_PROMPT}\n\n{profile_block}", f"{context_block}\n\nWhat do you do?"
    return ACTION_SYSTEM_PROMPT, f"{profile_block}\n\n{context_block}\n\nWhat do you do?"


def _render_memory_lines(memories: Sequence[Memory]) -> str:
    return "\n".join(f"- [Impact: {m.emotional_weight}] {m.content}" for m in memories)


# ============================================================================
# LLM Call Functions
# ============================================================================


async def get_character_action(
    profile: CharacterProfile,
    context: CharacterContext,
    llm_provider: str,
    llm_model: str,
    *,
    caching: bool = True,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> ActionDecision:
    """
    Ask the model what ``profile`` does next given ``context``.

    Raises:
        Exception: Provider, transport or validation errors propagate to the caller
    """
    system_prompt, user_prompt = build_action_prompts(profile, context, caching=caching)
    if llm_debug_enabled():
        print(f"--- action prompt for {profile.name} ---\n{system_prompt}\n\n{user_prompt}")

    decision = await call_llm_with_retries(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        llm_provider=llm_provider,
        llm_model=llm_model,
        response_model=ActionDecision,
        timeout=timeout,
    )
    if llm_debug_enabled():
        print(f"--- action response for {profile.name} ---\n{decision.model_dump_json(indent=2)}")
    return decision


async def summarize_memories(
    character_name: str,
    memories: Sequence[Memory],
    llm_provider: str,
    llm_model: str,
    *,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> str:
    """Return a 2-3 sentence digest of the character's memories."""

    user_prompt = f"""
Create a concise summary of {character_name}'s key memories and experiences.
Focus on the most emotionally significant events and relationships.

Memories to summarize:
{_render_memory_lines(memories)}

Respond with JSON: {{"summary": "2-3 sentences"}}
"""
    digest = await call_llm_with_retries(
        system_prompt="You summarize a story character's memories.",
        user_prompt=user_prompt,
        llm_provider=llm_provider,
        llm_model=llm_model,
        response_model=MemoryDigest,
        timeout=timeout,
    )
    return digest.summary.strip()


async def consolidate_memories(
    character_name: str,
    memories: Sequence[Memory],
    llm_provider: str,
    llm_model: str,
    *,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> ConsolidationResult:
    """Distill recent memories into one long-term memory with emotion and tags."""

    user_prompt = f"""
Recent memories of {character_name}:
{_render_memory_lines(memories)}

Distill them into a single cohesive long-term memory. Identify the primary
emotional tone and up to three tags.

Respond with JSON:
{{
  "consolidated_memory": "2-3 sentence narrative of the key events and feelings",
  "primary_emotion": "dominant emotion, e.g. reflective",
  "tags": ["tag1", "tag2", "tag3"]
}}
"""
    return await call_llm_with_retries(
        system_prompt=(
            f"You are the memory consolidation module for {character_name}, "
            "a character in a small simulated town."
        ),
        user_prompt=user_prompt,
        llm_provider=llm_provider,
        llm_model=llm_model,
        response_model=ConsolidationResult,
        timeout=timeout,
    )


__all__ = [
    "ACTION_SYSTEM_PROMPT",
    "build_action_prompts",
    "consolidate_memories",
    "get_character_action",
    "render_character_profile",
    "render_context",
    "summarize_memories",
]
