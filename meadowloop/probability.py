"""Per-tick action probability model.

Each living character that is not cooling down rolls once per tick. The
probability starts from a base rate, gains an additive personality bonus, is
scaled by the current emotion, by social proximity and by recency damping,
and is finally clamped into ``[0, max_action_probability]``.
"""

from __future__ import annotations

import random
from datetime import datetime
from typing import Dict

from meadowloop.config import ProbabilitySettings
from meadowloop.schemas import Character

EMOTION_MULTIPLIERS: Dict[str, float] = {
    "excited": 1.8,
    "angry": 1.6,
    "anxious": 1.4,
    "happy": 1.3,
    "content": 1.0,
    "melancholic": 0.8,
    "sad": 0.7,
}

MIN_FREQUENCY_PROBABILITY = 0.05
MAX_FREQUENCY_PROBABILITY = 0.50


def base_probability(settings: ProbabilitySettings) -> float:
    """Configured base rate, or the 1-10 frequency setting mapped onto [0.05, 0.50]."""

    if settings.conversation_frequency is None:
        return settings.base_action_probability
    span = MAX_FREQUENCY_PROBABILITY - MIN_FREQUENCY_PROBABILITY
    return MIN_FREQUENCY_PROBABILITY + span * (settings.conversation_frequency - 1) / 9


def action_probability(
    character: Character,
    *,
    settings: ProbabilitySettings,
    has_social_neighbor: bool,
    recently_acted: bool,
) -> float:
    traits = character.big_five
    probability = base_probability(settings)
    probability += traits.extraversion / 500 + traits.openness / 500 + traits.neuroticism / 1000
    probability *= EMOTION_MULTIPLIERS.get(character.current_emotion.lower(), 1.0)
    if has_social_neighbor:
        probability *= settings.social_bonus
    if recently_acted:
        probability *= settings.recency_damping
    return max(0.0, min(probability, settings.max_action_probability))


class ActionSelector:
    """Rolls the dice for each character and remembers when they last acted."""

    def __init__(self, settings: ProbabilitySettings, rng: random.Random) -> None:
        self.settings = settings
        self.rng = rng
        self.last_action_at: Dict[str, datetime] = {}

    def recently_acted(self, character_id: str, now: datetime) -> bool:
        last = self.last_action_at.get(character_id)
        if last is None:
            return False
        return (now - last).total_seconds() < self.settings.recency_window_seconds

    def probability_for(self, character: Character, *, has_social_neighbor: bool, now: datetime) -> float:
        return action_probability(
            character,
            settings=self.settings,
            has_social_neighbor=has_social_neighbor,
            recently_acted=self.recently_acted(character.id, now),
        )

    def should_act(
        self,
        character: Character,
        *,
        has_social_neighbor: bool,
        now: datetime,
        force: bool = False,
    ) -> bool:
        """Roll for ``character``; ``force`` skips the roll but still records the action time."""

        acted = force or self.rng.random() < self.probability_for(
            character, has_social_neighbor=has_social_neighbor, now=now
        )
        if acted:
            self.last_action_at[character.id] = now
        return acted


__all__ = [
    "ActionSelector",
    "EMOTION_MULTIPLIERS",
    "action_probability",
    "base_probability",
]
