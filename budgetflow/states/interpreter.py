"""
Интерпретатор машины флоу: очередь событий, запуск акторов, подписчики.

Все изменения состояния идут через один `send`: события складываются в
очередь и обрабатываются строго по порядку. Повторный `send` изнутри
подписчика или из результата актора только ставит событие в очередь.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from budgetflow.config import settings
from budgetflow.states import events as ev
from budgetflow.states.context import FlowContext
from budgetflow.states.machine import FlowMachine, InvokeEffect, Step, default_machine
from budgetflow.states.persistence import dump_snapshot, load_snapshot
from budgetflow.states.screens import Screen

logger = logging.getLogger(__name__)

Actor = Callable[[Mapping[str, Any]], Awaitable[Any]]
Listener = Callable[[Screen, FlowContext], Any]


@dataclass(frozen=True)
class _Pending:
    actor: str
    scope: Optional[Screen]
    entry_seq: int


class FlowInterpreter:
    """Запускает `FlowMachine` и её акторы в текущем event loop.

    Args:
        actors (Mapping[str, Actor]): Реестр акторов по имени
            (см. `FlowActors.as_mapping`).
        timeouts (Mapping[str, float] | None): Таймауты по имени актора.
            По умолчанию `INIT_TIMEOUT` для init_user и `REQUEST_TIMEOUT`
            для остальных.
        machine (FlowMachine | None): Машина; по умолчанию с валютой
            расчётов из настроек.
    """

    def __init__(
        self,
        actors: Mapping[str, Actor],
        timeouts: Optional[Mapping[str, float]] = None,
        machine: Optional[FlowMachine] = None,
    ):
        self._actors = dict(actors)
        self._timeouts = {"init_user": settings.INIT_TIMEOUT}
        self._timeouts.update(timeouts or {})
        self._machine = machine or default_machine
        self._state = Screen.INITIALIZING
        self._context = FlowContext()
        self._queue: deque[ev.Event] = deque()
        self._draining = False
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()
        self._pending: dict[int, _Pending] = {}
        self._ids = itertools.count(1)
        self._entry_seq = 0
        self._started = False
        self._stopped = False

    # --- чтение ---

    @property
    def state(self) -> Screen:
        return self._state

    @property
    def context(self) -> FlowContext:
        return self._context

    def matches(self, prefix: str) -> bool:
        return self._state.matches(prefix)

    def snapshot(self) -> dict:
        return dump_snapshot(self._state, self._context)

    # --- жизненный цикл ---

    async def start(self, host_user: Optional[Mapping[str, Any]] = None, snapshot: Any = None) -> None:
        """Старт машины.

        Без снэпшота машина входит в `initializing` и запускает init_user.
        Со снэпшотом восстанавливается сохранённый экран и заново
        выполняется вход в него (акторы экрана и профиль).
        """
        if self._started:
            raise RuntimeError("Interpreter already started")
        self._started = True
        if snapshot is None:
            step = self._machine.initial(host_user=host_user)
        else:
            state, ctx = load_snapshot(snapshot)
            step = self._machine.enter(state, ctx)
            logger.info(f"[FLOW] Resumed at {state.value}")
        self._apply(step)
        self._drain()

    def stop(self) -> None:
        """Останавливает интерпретатор; результаты незавершённых акторов отбрасываются."""
        self._stopped = True
        self._queue.clear()
        self._pending.clear()
        for task in list(self._tasks):
            task.cancel()

    async def wait_idle(self) -> None:
        """Ждёт, пока не останется запущенных акторов и событий в очереди."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            # дать done-колбэкам доставить результаты
            await asyncio.sleep(0)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Подписка на изменения; возвращает функцию отписки."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- события ---

    def send(self, event: ev.Event) -> None:
        if self._stopped:
            logger.debug(f"[FLOW] {event.type} dropped: interpreter stopped")
            return
        self._queue.append(event)
        if self._started:
            self._drain()

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                event = self._queue.popleft()
                if isinstance(event, (ev.ActorDone, ev.ActorError)) and self._is_stale(event):
                    continue
                step = self._machine.transition(self._state, self._context, event)
                self._apply(step)
        finally:
            self._draining = False

    def _is_stale(self, event) -> bool:
        pending = self._pending.pop(event.invocation_id, None)
        if pending is None:
            return True
        if pending.scope is None:
            fresh = self._state.is_ready
        else:
            fresh = self._state == pending.scope and self._entry_seq == pending.entry_seq
        if not fresh:
            logger.debug(f"[FLOW] Dropped stale {event.actor} result #{event.invocation_id} in {self._state.value}")
        return not fresh

    def _apply(self, step: Step) -> None:
        self._state = step.state
        self._context = step.context
        if step.entered:
            self._entry_seq += 1
        for effect in step.effects:
            self._spawn(effect)
        if step.changed:
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, self._context)
            except Exception as e:
                logger.exception(f"[FLOW] Listener failed: {e}")

    # --- акторы ---

    def _spawn(self, effect: InvokeEffect) -> None:
        actor = self._actors.get(effect.actor)
        invocation_id = next(self._ids)
        self._pending[invocation_id] = _Pending(effect.actor, effect.scope, self._entry_seq)
        if actor is None:
            logger.error(f"[FLOW] No actor registered for {effect.actor}")
            self._queue.append(ev.ActorError(effect.actor, invocation_id, f"Unknown actor: {effect.actor}", "LookupError"))
            return
        timeout = self._timeouts.get(effect.actor, settings.REQUEST_TIMEOUT)
        task = asyncio.get_running_loop().create_task(
            self._run_actor(effect.actor, actor, effect.input, invocation_id, timeout),
            name=f"actor:{effect.actor}:{invocation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_actor(self, name: str, actor: Actor, payload, invocation_id: int, timeout: float) -> None:
        try:
            output = await asyncio.wait_for(actor(payload), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"[FLOW] Actor {name} timed out after {timeout}s")
            self.send(ev.ActorError(name, invocation_id, f"Request timed out after {timeout}s", "RequestTimeout"))
            return
        except Exception as e:
            logger.warning(f"[FLOW] Actor {name} failed: {e}")
            self.send(ev.ActorError(name, invocation_id, str(e) or type(e).__name__, type(e).__name__))
            return
        self.send(ev.ActorDone(name, invocation_id, output))
