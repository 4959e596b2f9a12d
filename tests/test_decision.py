"""Tests for the LLM-backed decision and digest clients."""

import asyncio
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from meadowloop.decision import (
    ActionGenerationError,
    ActionRequest,
    DigestError,
    LLMActionDecisionClient,
    LLMMemoryDigestClient,
    ModelHint,
    OverloadedError,
    UsageTracker,
    resolve_model_hint,
)
from meadowloop.schemas import (
    ActionDecision,
    CharacterContext,
    CharacterProfile,
    Injection,
    Position,
)


def make_request(hint: ModelHint = ModelHint.ADAPTIVE, **context_fields) -> ActionRequest:
    return ActionRequest(
        character=CharacterProfile(id="tom", name="Tom"),
        context=CharacterContext(
            character_id="tom",
            tick=3,
            timestamp=datetime(2025, 5, 1, tzinfo=timezone.utc),
            position=Position(x=1, y=1),
            **context_fields,
        ),
        model_hint=hint,
    )


def make_client(**kwargs) -> LLMActionDecisionClient:
    return LLMActionDecisionClient(
        provider="anthropic", cheap_model="cheap-model", capable_model="capable-model", **kwargs
    )


def test_resolve_model_hint():
    routine = make_request().context
    replying = make_request(conversation_priority="Maria").context
    scenario = make_request(injection=Injection(content="Fire!")).context

    assert resolve_model_hint(ModelHint.ADAPTIVE, routine) is ModelHint.CHEAP
    assert resolve_model_hint(ModelHint.ADAPTIVE, replying) is ModelHint.CAPABLE
    assert resolve_model_hint(ModelHint.ADAPTIVE, scenario) is ModelHint.CAPABLE
    assert resolve_model_hint(ModelHint.CHEAP, scenario) is ModelHint.CHEAP
    assert resolve_model_hint(ModelHint.CAPABLE, routine) is ModelHint.CAPABLE


@pytest.mark.asyncio
async def test_decide_routes_to_model_tier(monkeypatch):
    seen = []

    async def fake_action(profile, context, provider, model, *, caching, timeout):
        seen.append((model, caching))
        return ActionDecision(action="stay_idle")

    monkeypatch.setattr("meadowloop.decision.get_character_action", fake_action)
    usage = UsageTracker()
    client = make_client(usage=usage)

    await client.decide(make_request())
    await client.decide(make_request(conversation_priority="Maria"))

    assert seen == [("cheap-model", True), ("capable-model", True)]
    assert usage.summary() == {"calls": {"cheap": 1, "capable": 1}, "failures": {}}


@pytest.mark.asyncio
async def test_overload_becomes_overloaded_error(monkeypatch):
    class RateLimitError(Exception):
        pass

    async def fake_action(*args, **kwargs):
        raise RateLimitError("429 too many requests")

    monkeypatch.setattr("meadowloop.decision.get_character_action", fake_action)
    client = make_client()

    with pytest.raises(OverloadedError) as excinfo:
        await client.decide(make_request())

    assert excinfo.value.character_id == "tom"
    assert client.usage.failures["overloaded"] == 1


@pytest.mark.asyncio
async def test_timeout_and_malformed_output_are_generation_errors(monkeypatch):
    try:
        ActionDecision.model_validate({})
    except ValidationError as exc:
        validation_error = exc

    failures = iter([asyncio.TimeoutError(), validation_error, RuntimeError("boom")])

    async def fake_action(*args, **kwargs):
        raise next(failures)

    monkeypatch.setattr("meadowloop.decision.get_character_action", fake_action)
    client = make_client()

    for _ in range(3):
        with pytest.raises(ActionGenerationError) as excinfo:
            await client.decide(make_request())
        assert not isinstance(excinfo.value, OverloadedError)

    assert dict(client.usage.failures) == {"timeout": 1, "malformed": 1, "error": 1}


@pytest.mark.asyncio
async def test_digest_failures_become_digest_errors(monkeypatch):
    async def failing(*args, **kwargs):
        raise RuntimeError("provider down")

    monkeypatch.setattr("meadowloop.decision.summarize_memories", failing)
    monkeypatch.setattr("meadowloop.decision.consolidate_memories", failing)
    client = LLMMemoryDigestClient(provider="openai", model="gpt-4o-mini")

    with pytest.raises(DigestError):
        await client.summarize("Tom", [])
    with pytest.raises(DigestError):
        await client.consolidate("Tom", [])

    assert client.usage.summary() == {
        "calls": {"summary": 1, "consolidation": 1},
        "failures": {"summary": 1, "consolidation": 1},
    }
