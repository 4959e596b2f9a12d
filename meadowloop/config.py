"""
MeadowLoop Configuration

Two layers:

``Config``
    Process-level settings loaded from environment variables (and a ``.env``
    file when present): provider, model names, API keys, data directories.

``SimulationSettings``
    Explicit tunables for the engine (tick speed, probability model, memory
    policy, conversation windows). An instance is passed to the engine and to
    every collaborator at construction. ``SimulationSettings.resolve`` merges
    the available sources with the precedence

        explicit per-call override > injected settings > persisted defaults > field defaults
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .logging_utils import log_error

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "anthropic")
    LLM_MODEL_CHEAP: str = os.getenv("LLM_MODEL_CHEAP", "claude-3-5-haiku-latest")
    LLM_MODEL_CAPABLE: str = os.getenv("LLM_MODEL_CAPABLE", "claude-sonnet-4-0")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local LLM Configuration (Ollama)
    # Example: http://localhost:11434
    LOCAL_LLM_BASE_URL: str | None = os.getenv("LOCAL_LLM_BASE_URL")

    # Simulation Configuration
    TICK_DURATION_SECONDS: float = float(os.getenv("TICK_DURATION_SECONDS", "5"))
    DEFAULT_TICK_COUNT: int = int(os.getenv("DEFAULT_TICK_COUNT", "20"))

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    DATA_DIR: Path = Path(os.getenv("MEADOWLOOP_DATA_DIR", PROJECT_ROOT / "examples" / "town" / "data"))
    STATE_DIR: Path = Path(os.getenv("MEADOWLOOP_STATE_DIR", "meadowloop_state"))
    SETTINGS_PATH: Path | None = (
        Path(os.environ["MEADOWLOOP_SETTINGS_PATH"]) if os.getenv("MEADOWLOOP_SETTINGS_PATH") else None
    )

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For a local Ollama server, set LLM_PROVIDER=ollama instead."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "MeadowLoop Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  Models: cheap={cls.LLM_MODEL_CHEAP} capable={cls.LLM_MODEL_CAPABLE}",
            f"  LLM Timeout: {cls.LLM_TIMEOUT_SECONDS}s",
            f"  Data Dir: {cls.DATA_DIR}",
            f"  State Dir: {cls.STATE_DIR}",
            f"  Tick Duration: {cls.TICK_DURATION_SECONDS}s",
        ]
        return "\n".join(lines)


# ============================================================================
# Simulation settings
# ============================================================================


class ProbabilitySettings(BaseModel):
    """Inputs to the per-tick action probability model."""

    base_action_probability: float = Field(0.30, ge=0.0, le=1.0)
    conversation_frequency: Optional[int] = Field(
        None, ge=1, le=10, description="When set, replaces the base probability (scaled to 0.05-0.50)"
    )
    max_action_probability: float = Field(0.8, ge=0.0, le=1.0)
    social_radius: int = Field(3, ge=0)
    social_bonus: float = Field(1.4, ge=0.0)
    recency_window_seconds: float = Field(20.0, ge=0.0)
    recency_damping: float = Field(0.6, ge=0.0, le=1.0)


class MemorySettings(BaseModel):
    max_memories: int = Field(50, ge=5, le=100)
    strategy: Literal["fifo", "periodic"] = "fifo"
    wipe_interval: int = Field(50, ge=1, description="Ticks between periodic wipes")
    assumed_tick_seconds: float = Field(3.0, gt=0.0)
    dedup_every: int = Field(10, ge=1)
    wipe_check_every: int = Field(100, ge=1)
    summary_every: int = Field(20, ge=1)
    summary_min_memories: int = Field(10, ge=0)
    summary_window: int = Field(15, ge=1)
    auto_consolidation: bool = False
    consolidation_every: int = Field(50, ge=1)
    consolidation_min_memories: int = Field(15, ge=1)
    consolidation_batch: int = Field(20, ge=1)
    consolidated_weight: int = Field(85, ge=0, le=100)


class ConversationSettings(BaseModel):
    monologue_timeout_seconds: float = 30.0
    inactivity_timeout_seconds: float = 120.0
    max_participant_distance: int = 5
    reuse_window_seconds: float = 120.0
    context_window_seconds: float = 300.0
    priority_window_seconds: float = 30.0
    context_message_limit: int = 5


class SimulationSettings(BaseModel):
    """Engine tunables. Nested sections merge key-by-key in ``resolve``."""

    seconds_per_tick: float = Field(5.0, gt=0.0)
    always_act: bool = Field(False, description="Test mode: every eligible character acts each tick")
    overload_cooldown_ticks: int = Field(5, ge=0)
    decision_timeout_seconds: float = Field(90.0, gt=0.0)

    grid_width: int = Field(50, ge=1)
    grid_height: int = Field(37, ge=1)
    max_move_distance: int = Field(3, ge=1)
    approach_radius: int = Field(8, ge=0)
    avoid_characters: bool = True

    event_retention: int = Field(1000, ge=10)
    recent_event_limit: int = Field(5, ge=0)
    recent_event_window_seconds: float = 3600.0

    model_hint: Literal["cheap", "capable", "adaptive"] = "adaptive"
    prompt_caching: bool = True

    probability: ProbabilitySettings = Field(default_factory=ProbabilitySettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)

    @classmethod
    def resolve(
        cls,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        injected: Union["SimulationSettings", Mapping[str, Any], None] = None,
        persisted_path: Optional[Path] = None,
    ) -> "SimulationSettings":
        """Merge settings sources, highest precedence last.

        Field defaults are the fallback. A persisted JSON file (if given and
        readable) overrides them, an injected object overrides that, and
        explicit overrides win. An unreadable persisted file is logged and
        skipped.
        """

        merged: Dict[str, Any] = {}
        if persisted_path is not None:
            merged = _deep_merge(merged, load_persisted_settings(persisted_path))
        if injected is not None:
            if isinstance(injected, SimulationSettings):
                injected = injected.model_dump(exclude_unset=True)
            merged = _deep_merge(merged, dict(injected))
        if overrides:
            merged = _deep_merge(merged, dict(overrides))
        return cls.model_validate(merged)

    def with_overrides(self, overrides: Optional[Mapping[str, Any]] = None, **changes: Any) -> "SimulationSettings":
        """Return a copy with explicit overrides applied (per-call precedence)."""

        combined = dict(overrides or {})
        combined.update(changes)
        if not combined:
            return self
        return SimulationSettings.model_validate(_deep_merge(self.model_dump(), combined))


def load_persisted_settings(path: Path) -> Dict[str, Any]:
    """Read persisted defaults; malformed or missing files yield ``{}``."""

    path = Path(path)
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("settings file must contain a JSON object")
        # A file that fails validation is dropped as a whole.
        SimulationSettings.model_validate(payload)
    except (OSError, ValueError, ValidationError) as exc:
        log_error(f"Ignoring persisted settings at {path}: {exc}")
        return {}
    return payload


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in update.items():
        if isinstance(value, BaseModel):
            value = value.model_dump(exclude_unset=True)
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _deep_merge(dict(result[key]), dict(value))
        else:
            result[key] = value
    return result


__all__ = [
    "Config",
    "ConversationSettings",
    "MemorySettings",
    "ProbabilitySettings",
    "SimulationSettings",
    "load_persisted_settings",
]
