"""
Decision and memory-digest ports, plus their LLM-backed implementations.

The engine depends only on the two abstract capabilities defined here:

``ActionDecisionClient``
    ``decide(request) -> ActionDecision``. Failures surface as
    ``OverloadedError`` (rate limit / overload) or ``ActionGenerationError``
    (anything else), so the scheduler can impose a cooldown only when the
    upstream asked for one.

``MemoryDigestClient``
    ``summarize(name, memories) -> str`` and
    ``consolidate(name, memories) -> ConsolidationResult``. Failures surface as
    ``DigestError``.

Both are wired at construction time; nothing is resolved lazily at call time.
Tests substitute scripted clients.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from meadowloop.config import Config
from meadowloop.llm_calls import consolidate_memories, get_character_action, summarize_memories
from meadowloop.llm_utils import LLM_TIMEOUT_SECONDS, is_overload_error
from meadowloop.logging_utils import log_llm
from meadowloop.schemas import (
    ActionDecision,
    CharacterContext,
    CharacterProfile,
    ConsolidationResult,
    Memory,
)


# ============================================================================
# Failure types
# ============================================================================


class ActionGenerationError(RuntimeError):
    """The decision client could not produce an action for one character."""

    def __init__(self, character_id: str, message: str) -> None:
        super().__init__(f"[{character_id}] {message}")
        self.character_id = character_id


class OverloadedError(ActionGenerationError):
    """The upstream model is rate limited or overloaded; back off this character."""


class DigestError(RuntimeError):
    """Summarization or consolidation failed for one character."""


# ============================================================================
# Request model
# ============================================================================


class ModelHint(str, Enum):
    CHEAP = "cheap"
    CAPABLE = "capable"
    ADAPTIVE = "adaptive"


class ActionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    character: CharacterProfile
    context: CharacterContext
    model_hint: ModelHint = ModelHint.ADAPTIVE
    caching_hint: bool = True


def resolve_model_hint(hint: ModelHint, context: CharacterContext) -> ModelHint:
    """Collapse ``adaptive`` into cheap or capable for this context.

    Scenario injections and replies to someone who just spoke go to the
    capable model; routine moments go to the cheap one.
    """

    if hint is not ModelHint.ADAPTIVE:
        return hint
    if context.injection is not None or context.conversation_priority:
        return ModelHint.CAPABLE
    return ModelHint.CHEAP


# ============================================================================
# Ports
# ============================================================================


class ActionDecisionClient(ABC):
    @abstractmethod
    async def decide(self, request: ActionRequest) -> ActionDecision:
        """Return the character's next action or raise ``ActionGenerationError``."""


class MemoryDigestClient(ABC):
    @abstractmethod
    async def summarize(self, character_name: str, memories: Sequence[Memory]) -> str:
        """Return a short narrative digest or raise ``DigestError``."""

    @abstractmethod
    async def consolidate(self, character_name: str, memories: Sequence[Memory]) -> ConsolidationResult:
        """Return one consolidated memory or raise ``DigestError``."""


# ============================================================================
# LLM implementations
# ============================================================================


class UsageTracker:
    """Session counters: calls per model tier and failures per kind."""

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.failures: Counter[str] = Counter()

    def record_call(self, tier: str) -> None:
        self.calls[tier] += 1

    def record_failure(self, kind: str) -> None:
        self.failures[kind] += 1

    def summary(self) -> dict[str, dict[str, int]]:
        return {"calls": dict(self.calls), "failures": dict(self.failures)}


class LLMActionDecisionClient(ActionDecisionClient):
    """Decision client backed by ``llm_calls.get_character_action``."""

    def __init__(
        self,
        *,
        provider: Optional[str] = None,
        cheap_model: Optional[str] = None,
        capable_model: Optional[str] = None,
        timeout: Optional[float] = None,
        usage: Optional[UsageTracker] = None,
    ) -> None:
        self.provider = provider or Config.LLM_PROVIDER
        self.models = {
            ModelHint.CHEAP: cheap_model or Config.LLM_MODEL_CHEAP,
            ModelHint.CAPABLE: capable_model or Config.LLM_MODEL_CAPABLE,
        }
        self.timeout = timeout or Config.LLM_TIMEOUT_SECONDS or LLM_TIMEOUT_SECONDS
        self.usage = usage or UsageTracker()

    async def decide(self, request: ActionRequest) -> ActionDecision:
        tier = resolve_model_hint(request.model_hint, request.context)
        model = self.models[tier]
        name = request.character.name
        log_llm(f"[{name}] Requesting action ({tier.value} model {model})")
        self.usage.record_call(tier.value)
        try:
            return await get_character_action(
                request.character,
                request.context,
                self.provider,
                model,
                caching=request.caching_hint,
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            self.usage.record_failure("timeout")
            raise ActionGenerationError(request.character.id, "decision timed out") from exc
        except ValidationError as exc:
            self.usage.record_failure("malformed")
            raise ActionGenerationError(request.character.id, "malformed decision") from exc
        except Exception as exc:
            if is_overload_error(exc):
                self.usage.record_failure("overloaded")
                raise OverloadedError(request.character.id, f"upstream overloaded: {exc}") from exc
            self.usage.record_failure("error")
            raise ActionGenerationError(request.character.id, str(exc) or type(exc).__name__) from exc


class LLMMemoryDigestClient(MemoryDigestClient):
    """Summaries and consolidation on the cheap model tier."""

    def __init__(
        self,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        usage: Optional[UsageTracker] = None,
    ) -> None:
        self.provider = provider or Config.LLM_PROVIDER
        self.model = model or Config.LLM_MODEL_CHEAP
        self.timeout = timeout or Config.LLM_TIMEOUT_SECONDS or LLM_TIMEOUT_SECONDS
        self.usage = usage or UsageTracker()

    async def summarize(self, character_name: str, memories: Sequence[Memory]) -> str:
        log_llm(f"[{character_name}] Summarizing {len(memories)} memories")
        self.usage.record_call("summary")
        try:
            return await summarize_memories(
                character_name, memories, self.provider, self.model, timeout=self.timeout
            )
        except Exception as exc:
            self.usage.record_failure("summary")
            raise DigestError(f"summary failed for {character_name}") from exc

    async def consolidate(self, character_name: str, memories: Sequence[Memory]) -> ConsolidationResult:
        log_llm(f"[{character_name}] Consolidating {len(memories)} memories")
        self.usage.record_call("consolidation")
        try:
            return await consolidate_memories(
                character_name, memories, self.provider, self.model, timeout=self.timeout
            )
        except Exception as exc:
            self.usage.record_failure("consolidation")
            raise DigestError(f"consolidation failed for {character_name}") from exc


__all__ = [
    "ActionDecisionClient",
    "ActionGenerationError",
    "ActionRequest",
    "DigestError",
    "LLMActionDecisionClient",
    "LLMMemoryDigestClient",
    "MemoryDigestClient",
    "ModelHint",
    "OverloadedError",
    "UsageTracker",
    "resolve_model_hint",
]
