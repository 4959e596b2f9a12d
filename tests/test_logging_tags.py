"""Tests for truthful logging tags ([AI] vs [•] vs [!]) in engine output.

These tests assert that:
- Scripted decisions never print the [AI] tag
- LLM-backed decisions print [AI] before each request
- Contained failures are tagged [!] and the tick still completes
"""

from __future__ import annotations

import contextlib
import io

import pytest

from meadowloop.decision import ActionDecisionClient, LLMActionDecisionClient
from meadowloop.engine import SimulationEngine
from meadowloop.schemas import ActionDecision


class IdleClient(ActionDecisionClient):
    async def decide(self, request):
        return ActionDecision(action="move_to_zone", target_x=10, target_y=10)


class FailingClient(ActionDecisionClient):
    async def decide(self, request):
        raise RuntimeError("no idea")


async def _run_one_tick(store, client) -> str:
    engine = SimulationEngine(store, client)
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        await engine.run(1, overrides={"always_act": True})
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _plain_output(monkeypatch):
    monkeypatch.setenv("MEADOWLOOP_NO_COLOR", "1")


@pytest.mark.asyncio
async def test_scripted_tick_uses_deterministic_tags(make_store, make_character):
    store = make_store([make_character("alice", 1, 1)])

    out = await _run_one_tick(store, IdleClient())

    assert "=== Tick 1 ===" in out
    assert "[•] [Alice] Moved (1, 1) -> " in out
    assert "[✓] Tick 1 done: 1 action(s), 0 failure(s)" in out
    assert "[AI]" not in out


@pytest.mark.asyncio
async def test_llm_client_tags_requests(monkeypatch, make_store, make_character):
    store = make_store([make_character("alice", 1, 1)])

    async def fake_action(*args, **kwargs):
        return ActionDecision(action="stay_idle")

    monkeypatch.setattr("meadowloop.decision.get_character_action", fake_action)
    client = LLMActionDecisionClient(provider="openai", cheap_model="gpt-4o-mini", capable_model="gpt-4o")

    out = await _run_one_tick(store, client)

    assert "[AI] [Alice] Requesting action (cheap model gpt-4o-mini)" in out


@pytest.mark.asyncio
async def test_failures_are_tagged_and_contained(make_store, make_character):
    store = make_store([make_character("alice", 1, 1)])

    out = await _run_one_tick(store, FailingClient())

    assert "[!] [Alice] No action this tick: no idea" in out
    assert "[✓] Tick 1 done: 0 action(s), 1 failure(s)" in out
