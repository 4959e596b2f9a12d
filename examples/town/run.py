"""MeadowLoop town demo.

By default the town runs with a scripted decision client (no LLM calls):

    uv run python examples/town/run.py --ticks 10

To let an LLM decide what the townsfolk do, pass `--llm`:

    uv run python examples/town/run.py --llm --ticks 10

Environment variables expected when `--llm` is used:
- `LLM_PROVIDER` (e.g., `anthropic`, `openai`, `ollama`)
- `LLM_MODEL_CHEAP` / `LLM_MODEL_CAPABLE`
- Provider-specific API key (e.g., `ANTHROPIC_API_KEY`)

Pass `--state-dir` to save the town between runs, and `--inject` to drop a
scenario event on everyone before the first tick.
"""

from __future__ import annotations

import argparse
import asyncio
import random
from pathlib import Path
from typing import Optional

from meadowloop import (
    ActionDecision,
    ActionDecisionClient,
    ActionRequest,
    Config,
    JsonPersistence,
    LLMActionDecisionClient,
    LLMMemoryDigestClient,
    MovementCommand,
    SimulationEngine,
    SimulationSettings,
    TownLoader,
    UsageTracker,
    load_world_store,
)

GREETINGS = [
    "Lovely weather today, isn't it?",
    "Have you heard about the harvest fair?",
    "I could use a break. How's your day going?",
    "Did you see the new flowers in the square?",
]
MOODS = ["happy", "content", "calm", "excited", "neutral"]


class ScriptedDecisionClient(ActionDecisionClient):
    """Deterministic stand-in for the LLM: chats when someone is near, wanders otherwise."""

    def __init__(self, rng: random.Random) -> None:
        self.rng = rng

    async def decide(self, request: ActionRequest) -> ActionDecision:
        context = request.context
        mood = self.rng.choice(MOODS)

        if context.injection is not None:
            return ActionDecision(
                internal_thoughts=f"Did that really happen? {context.injection.content}",
                emotion="excited",
                action_reasoning="Something happened that everyone should hear about",
                action="speak",
                dialogue=f"Everyone, listen! {context.injection.content}",
            )

        if context.conversation_priority or (context.nearby_characters and self.rng.random() < 0.6):
            return ActionDecision(
                internal_thoughts="Someone is nearby; I should say hello.",
                emotion=mood,
                action_reasoning="Being friendly",
                action="speak",
                dialogue=self.rng.choice(GREETINGS),
            )

        if context.available_zones and self.rng.random() < 0.7:
            zone = self.rng.choice(context.available_zones)
            return ActionDecision(
                internal_thoughts=f"I feel like going to the {zone}.",
                emotion=mood,
                action_reasoning=f"Stretching my legs toward the {zone}",
                action="move_to_zone",
                movement_command=MovementCommand(command="move_to_zone", target=zone),
            )

        return ActionDecision(
            internal_thoughts="Nothing needs doing right now.",
            emotion="calm",
            action_reasoning="Taking a moment to rest",
            action="stay_idle",
        )


def build_decision_client(use_llm: bool, seed: int, usage: UsageTracker) -> ActionDecisionClient:
    if use_llm:
        Config.validate()
        return LLMActionDecisionClient(usage=usage)
    return ScriptedDecisionClient(random.Random(seed))


def print_summary(store, usage: Optional[UsageTracker]) -> None:
    print("\n=== Town summary ===")
    for character in store.characters.values():
        zone = store.get_zone(character.position.zone) if character.position.zone else None
        print(
            f"  {character.name:<8} at ({character.position.x:>2}, {character.position.y:>2}) "
            f"{(zone.name if zone else 'open ground'):<14} feeling {character.current_emotion:<9} "
            f"{len(character.memories)} memories"
        )
    print(f"  Events logged: {len(store.events)}, conversations: {len(store.conversations)}")
    if usage is not None:
        print(f"  LLM usage: {usage.summary()}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run the MeadowLoop town demo")
    parser.add_argument("--ticks", type=int, default=Config.DEFAULT_TICK_COUNT)
    parser.add_argument("--llm", action="store_true", help="Use the configured LLM for decisions")
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--data-dir", type=Path, default=Config.DATA_DIR)
    parser.add_argument("--state-dir", type=Path, default=None)
    parser.add_argument("--always-act", action="store_true", help="Every character acts every tick")
    parser.add_argument("--inject", type=str, default=None, help="Scenario event for everyone")
    args = parser.parse_args()

    if args.llm:
        print(Config.display())

    settings = SimulationSettings.resolve(persisted_path=Config.SETTINGS_PATH)
    rng = random.Random(args.seed)
    persistence = JsonPersistence(args.state_dir) if args.state_dir else None
    store = await load_world_store(
        TownLoader(args.data_dir), persistence=persistence, settings=settings, rng=rng
    )

    usage = UsageTracker() if args.llm else None
    decision_client = build_decision_client(args.llm, args.seed, usage)
    digest_client = LLMMemoryDigestClient(usage=usage) if args.llm else None
    engine = SimulationEngine(
        store,
        decision_client,
        digest_client=digest_client,
        settings=settings,
        persistence=persistence,
        rng=rng,
    )

    if args.inject:
        engine.inject("global", args.inject)

    overrides = {"always_act": True} if args.always_act else None
    await engine.run(args.ticks, overrides=overrides)
    print_summary(store, usage)


if __name__ == "__main__":
    asyncio.run(main())
