"""
Simulation tick engine.

Owns the run/stop lifecycle and drives one tick at a time:

1. Advance the tick counter, refresh weather, correct stray positions
2. Select candidates: living characters that are not cooling down and win
   their probability roll (or are forced by test mode / a pending scenario event)
3. Phase A: build context and request a decision for every candidate concurrently
4. Phase B: execute the successful decisions one by one against the store
5. Maintenance: conversation cleanup every tick, memory sweeps, wipe checks
   and consolidation on their cadences, then an optional save

Phase B starts only after every Phase A call has settled, so all decisions in
a tick are made against the same start-of-tick world. Failures stay with the
character or maintenance step that raised them; nothing escapes
``process_tick``.

Dependencies (store, decision client, digest client, settings, persistence)
are injected at construction. Nothing is looked up lazily.

Usage:
    engine = SimulationEngine(store, LLMActionDecisionClient(), digest_client=LLMMemoryDigestClient())
    await engine.start()
    ...
    await engine.stop()

    # or, without the timer:
    reports = await engine.run(20, overrides={"always_act": True})
"""

from __future__ import annotations

import asyncio
import inspect
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .actions import ActionExecutor
from .cadence import MaintenanceCadence
from .config import SimulationSettings
from .context import ContextBuilder
from .conversations import ConversationManager
from .decision import (
    ActionDecisionClient,
    ActionRequest,
    MemoryDigestClient,
    ModelHint,
    OverloadedError,
)
from .logging_utils import (
    Color,
    colored,
    log_deterministic,
    log_error,
    log_info,
    log_success,
    log_verbose,
)
from .memory import MemoryManager
from .persistence import PersistenceStrategy
from .probability import ActionSelector
from .schemas import ActionDecision, ActionKind, Character, CharacterContext, CharacterProfile, Injection
from .store import WorldStore

MaintenanceStep = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class _EngineState:
    """Scheduler bookkeeping. Read from outside only through ``snapshot()``."""

    last_tick_at: Optional[datetime] = None
    cooldown_until: Dict[str, int] = field(default_factory=dict)
    last_speech_at: Dict[str, datetime] = field(default_factory=dict)
    running: bool = False
    in_progress: bool = False


class EngineStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    running: bool
    tick: int
    last_tick_at: Optional[datetime] = None
    cooldowns: Dict[str, int] = Field(
        default_factory=dict, description="Character id -> first tick it may act again"
    )
    tick_interval_seconds: float


@dataclass
class TickReport:
    """What happened during one tick."""

    tick: int
    candidates: List[str] = field(default_factory=list)
    actions: Dict[str, ActionKind] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    overloaded: List[str] = field(default_factory=list)
    maintenance_errors: Dict[str, str] = field(default_factory=dict)


class SimulationEngine:
    """Timer-driven scheduler for the town simulation."""

    def __init__(
        self,
        store: WorldStore,
        decision_client: ActionDecisionClient,
        *,
        digest_client: Optional[MemoryDigestClient] = None,
        settings: Optional[SimulationSettings] = None,
        persistence: Optional[PersistenceStrategy] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.decision_client = decision_client
        self.persistence = persistence
        self.settings = settings or store.settings
        self.store.settings = self.settings
        rng = rng or store.rng

        self._state = _EngineState()
        self._timer: Optional[asyncio.Task] = None
        self._current_tick: Optional[asyncio.Task] = None

        self.selector = ActionSelector(self.settings.probability, rng)
        self.conversations = ConversationManager(store, self.settings.conversation)
        self.memory = MemoryManager(store, self.settings.memory, digest_client)
        self.context_builder = ContextBuilder(store, self.conversations, self.memory, self.settings)
        self.executor = ActionExecutor(store, self.conversations, self.settings, self._state.last_speech_at)
        self.cadence = MaintenanceCadence.from_settings(self.settings.memory)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._state.running

    @property
    def tick_interval(self) -> float:
        return self.settings.seconds_per_tick

    async def start(self) -> None:
        """Start the timer. Idempotent: calling it while running does nothing."""

        if self._state.running:
            return
        self._state.running = True
        try:
            await self._startup()
            log_info(
                f"Simulation started: {len(self.store.living_characters())} characters, "
                f"tick every {self.tick_interval}s"
            )
            await self._tick_once()
        except BaseException:
            self._state.running = False
            raise
        if self._state.running:
            self._timer = asyncio.create_task(self._timer_loop())

    async def stop(self) -> None:
        """Stop scheduling ticks; a tick already in flight is allowed to finish."""

        if not self._state.running:
            return
        self._state.running = False
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._current_tick is not None and not self._current_tick.done():
            await self._current_tick
        if self.persistence is not None:
            await self.persistence.close()
        log_info(f"Simulation stopped at tick {self.store.tick}")

    def set_tick_speed(self, seconds: float) -> None:
        """Change the tick interval; applies from the next scheduled tick."""

        if seconds <= 0:
            raise ValueError("seconds per tick must be positive")
        self._apply_settings(self.settings.with_overrides(seconds_per_tick=seconds))

    def inject(self, target: str, content: str) -> Injection:
        return self.store.add_injection(target, content)

    def snapshot(self) -> EngineStatus:
        return EngineStatus(
            running=self._state.running,
            tick=self.store.tick,
            last_tick_at=self._state.last_tick_at,
            cooldowns=dict(self._state.cooldown_until),
            tick_interval_seconds=self.tick_interval,
        )

    async def run(
        self,
        num_ticks: int,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> List[TickReport]:
        """Run ``num_ticks`` ticks back to back without the timer.

        ``overrides`` apply to this call only; the engine's settings are
        restored afterwards.

        Raises:
            RuntimeError: If the timer-driven loop is already running
        """

        if self._state.running:
            raise RuntimeError("Engine is already running; stop() it before run()")

        previous = self.settings
        if overrides:
            self._apply_settings(self.settings.with_overrides(overrides))

        self._state.running = True
        reports: List[TickReport] = []
        try:
            await self._startup()
            for _ in range(num_ticks):
                report = await self.process_tick()
                if report is not None:
                    reports.append(report)
        finally:
            self._state.running = False
            if self.persistence is not None:
                await self.persistence.close()
            self._apply_settings(previous)
        return reports

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def process_tick(self) -> Optional[TickReport]:
        """Run one tick. Returns ``None`` when the tick was skipped or failed outright."""

        if not self._state.running:
            return None
        if self._state.in_progress:
            log_verbose("Tick skipped: previous tick still in progress")
            return None

        self._state.in_progress = True
        try:
            return await self._run_tick()
        except Exception as exc:
            log_error(f"Tick {self.store.tick} failed: {exc}")
            return None
        finally:
            self._state.in_progress = False

    async def _run_tick(self) -> TickReport:
        store = self.store
        store.tick += 1
        tick = store.tick
        now = store.clock()
        self._state.last_tick_at = now
        report = TickReport(tick=tick)
        print(colored(f"=== Tick {tick} ===", Color.BOLD))

        await self._maintenance(report, "environment", store.update_environment)
        store.ensure_walkable_positions()

        candidates = self._select_candidates(tick, now)
        report.candidates = [c.id for c in candidates]
        if candidates:
            log_deterministic(
                f"Candidates this tick: {', '.join(c.name for c in candidates)}"
            )

        decisions = await self._generate(candidates, tick, report)
        self._execute(decisions, report)
        await self._run_maintenance(tick, report)

        log_success(
            f"Tick {tick} done: {len(report.actions)} action(s), "
            f"{len(report.failures)} failure(s)"
        )
        return report

    def _select_candidates(self, tick: int, now: datetime) -> List[Character]:
        candidates: List[Character] = []
        radius = self.settings.probability.social_radius
        for character in self.store.living_characters():
            until = self._state.cooldown_until.get(character.id)
            if until is not None:
                if tick < until:
                    log_verbose(f"[{character.name}] Cooling down until tick {until}")
                    continue
                del self._state.cooldown_until[character.id]

            forced = (
                self.settings.always_act
                or self.store.next_injection_for(character.id) is not None
            )
            has_neighbor = bool(self.store.nearby_characters(character, radius))
            if self.selector.should_act(
                character, has_social_neighbor=has_neighbor, now=now, force=forced
            ):
                candidates.append(character)
        return candidates

    async def _generate(
        self,
        candidates: List[Character],
        tick: int,
        report: TickReport,
    ) -> List[Tuple[Character, CharacterContext, ActionDecision]]:
        """Phase A: every candidate's context + decision, settled before returning."""

        results = await asyncio.gather(
            *(self._decide(character, tick) for character in candidates),
            return_exceptions=True,
        )

        decisions: List[Tuple[Character, CharacterContext, ActionDecision]] = []
        for character, result in zip(candidates, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, OverloadedError):
                until = tick + self.settings.overload_cooldown_ticks + 1
                self._state.cooldown_until[character.id] = until
                report.overloaded.append(character.id)
                log_error(f"[{character.name}] Upstream overloaded; cooling down until tick {until}")
            if isinstance(result, Exception):
                report.failures[character.id] = str(result) or type(result).__name__
                log_error(f"[{character.name}] No action this tick: {report.failures[character.id]}")
                continue
            context, decision = result
            decisions.append((character, context, decision))
        return decisions

    async def _decide(self, character: Character, tick: int) -> Tuple[CharacterContext, ActionDecision]:
        context = await self.context_builder.build(
            character, tick=tick, last_speech_at=self._state.last_speech_at
        )
        request = ActionRequest(
            character=CharacterProfile.from_character(character),
            context=context,
            model_hint=ModelHint(self.settings.model_hint),
            caching_hint=self.settings.prompt_caching,
        )
        decision = await asyncio.wait_for(
            self.decision_client.decide(request),
            timeout=self.settings.decision_timeout_seconds,
        )
        return context, decision

    def _execute(
        self,
        decisions: List[Tuple[Character, CharacterContext, ActionDecision]],
        report: TickReport,
    ) -> None:
        """Phase B: apply decisions one at a time."""

        for character, context, decision in decisions:
            try:
                outcome = self.executor.execute(character.id, decision, context)
            except Exception as exc:
                report.failures[character.id] = str(exc) or type(exc).__name__
                log_error(f"[{character.name}] Action failed to apply: {exc}")
                continue
            report.actions[character.id] = outcome.kind
            log_success(f"[{character.name}] {outcome.kind.value} ({decision.emotion})")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def _run_maintenance(self, tick: int, report: TickReport) -> None:
        cadence = self.cadence
        if cadence.conversation_cleanup.is_due(tick=tick):
            await self._maintenance(report, "conversation cleanup", self.conversations.cleanup)
        if cadence.memory_sweep.is_due(tick=tick):
            await self._maintenance(report, "memory sweep", self.memory.maintenance_sweep)
        if cadence.wipe_check.is_due(tick=tick):
            await self._maintenance(report, "memory wipe check", self.memory.check_periodic_wipe)
        if cadence.consolidation is not None and cadence.consolidation.is_due(tick=tick):
            await self._maintenance(report, "memory consolidation", self.memory.consolidate_all)
        if self.persistence is not None:
            await self._maintenance(report, "save", self._save)

    async def _maintenance(self, report: TickReport, name: str, step: MaintenanceStep) -> None:
        try:
            result = step()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            report.maintenance_errors[name] = str(exc) or type(exc).__name__
            log_error(f"Maintenance step '{name}' failed: {exc}")

    async def _save(self) -> None:
        await self.persistence.save_world(self.store.base_state, self.store.snapshot())

    async def _startup(self) -> None:
        if self.persistence is not None:
            await self.persistence.initialize()
        removed = self.memory.dedup_sweep()
        if removed:
            log_deterministic(f"Startup dedup removed {removed} duplicate memories")

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    async def _tick_once(self) -> None:
        self._current_tick = asyncio.ensure_future(self.process_tick())
        # Cancelling the timer must not cancel a tick that already started.
        await asyncio.shield(self._current_tick)

    async def _timer_loop(self) -> None:
        while self._state.running:
            await asyncio.sleep(self.tick_interval)
            if not self._state.running:
                break
            await self._tick_once()

    def _apply_settings(self, settings: SimulationSettings) -> None:
        self.settings = settings
        self.store.settings = settings
        self.selector.settings = settings.probability
        self.conversations.settings = settings.conversation
        self.memory.settings = settings.memory
        self.context_builder.settings = settings
        self.executor.settings = settings
        self.cadence = MaintenanceCadence.from_settings(settings.memory)


__all__ = ["EngineStatus", "SimulationEngine", "TickReport"]
