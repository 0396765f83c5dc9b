"""
controller.py

Root of the OBS local controller.

Owns the session manager and one desired-state slot per intent. Putting a
value into a slot (even one equal to what is already there) supersedes any
task still working on that intent and starts a fresh reconciliation; when
the task finishes, successfully or not, it empties the slot again. Success
or failure is reported as a ReconcileOutcome to outcome listeners and kept
as last_outcome(intent).

    async with Controller(debug=True, address="localhost") as ctl:
        ctl.set_transition(DesiredTransition("Gameplay", "Fade", 300))
        outcome = await ctl.wait(Intent.PROGRAM_TRANSITION)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import SessionConfig, Timings
from .errors import ReconcileError, ReconcileOutcome
from .intents import (
    Intent,
    normalize_preview,
    normalize_transition,
    normalize_volumes,
)
from .logs import PACKAGE_LOGGER
from .reconcilers import RECONCILERS, Abandoned, Scope
from .session import SessionManager

log = logging.getLogger(__name__)

_NORMALIZERS = {
    Intent.PREVIEW_SCENE: normalize_preview,
    Intent.PROGRAM_TRANSITION: normalize_transition,
    Intent.VOLUME_SET: normalize_volumes,
}


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, tuple):
        return [v.to_dict() for v in value]
    return value.to_dict()


class _Slot:
    def __init__(self, intent: Intent):
        self.intent = intent
        self.value: Any = None
        self.generation = 0


class Controller:
    def __init__(self, debug: bool = False, address: Optional[str] = None,
                 port: Optional[int] = None, password: Optional[str] = None, *,
                 timings: Optional[Timings] = None,
                 transport_factory: Optional[Callable[[SessionConfig], Any]] = None):
        self.debug = debug
        if debug:
            logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)
        self.session_config = SessionConfig.build(address, port, password)
        self.timings = timings or Timings()
        self._transport_factory = transport_factory
        self.session: Optional[SessionManager] = None
        self.running = False

        self._slots: Dict[Intent, _Slot] = {i: _Slot(i) for i in Intent}
        self._tasks: Dict[Intent, Tuple[asyncio.Task, Scope]] = {}
        self._outcomes: Dict[Intent, ReconcileOutcome] = {}
        self._change_listeners: List[Callable[[Intent, Any], None]] = []
        self._outcome_listeners: List[Callable[[ReconcileOutcome], None]] = []

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.session = self._new_session()
        self.session.start()
        for intent, slot in self._slots.items():
            if slot.value is not None:
                self._dispatch(intent)

    async def close(self) -> None:
        if not self.running:
            return
        self.running = False
        tasks = [task for task, _ in self._tasks.values()]
        for intent in list(self._tasks):
            self._abandon(intent)
        if self.session is not None:
            await self.session.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "Controller":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _new_session(self) -> SessionManager:
        return SessionManager(self.session_config, transport_factory=self._transport_factory,
                              timings=self.timings)

    async def reconfigure(self, address: Optional[str] = None, port: Optional[int] = None,
                          password: Optional[str] = None) -> bool:
        """Point at a different OBS. Pending intents are re-run on the new session."""
        config = SessionConfig.build(address, port, password)
        if config == self.session_config:
            return False
        self.session_config = config
        if not self.running:
            return True
        log.info("session settings changed, reconnecting to %s", config.url)
        for intent in list(self._tasks):
            self._abandon(intent)
        old, self.session = self.session, self._new_session()
        if old is not None:
            await old.close()
        self.session.start()
        for intent, slot in self._slots.items():
            if slot.value is not None:
                self._dispatch(intent)
        return True

    # -----------------------------
    # Desired state
    # -----------------------------
    @property
    def preview_scene(self):
        return self._slots[Intent.PREVIEW_SCENE].value

    def set_preview_scene(self, value) -> None:
        self.set(Intent.PREVIEW_SCENE, value)

    @property
    def transition(self):
        return self._slots[Intent.PROGRAM_TRANSITION].value

    def set_transition(self, value) -> None:
        self.set(Intent.PROGRAM_TRANSITION, value)

    @property
    def volumes(self):
        return self._slots[Intent.VOLUME_SET].value

    def set_volumes(self, value) -> None:
        self.set(Intent.VOLUME_SET, value)

    def get(self, intent: Intent) -> Any:
        return self._slots[intent].value

    def set(self, intent: Intent, value: Any) -> None:
        self._store(intent, _NORMALIZERS[intent](value))
        self._dispatch(intent)

    def _store(self, intent: Intent, value: Any) -> None:
        slot = self._slots[intent]
        slot.value = value
        slot.generation += 1
        for cb in list(self._change_listeners):
            try:
                cb(intent, value)
            except Exception:
                log.exception("change listener failed")

    def add_change_listener(self, cb: Callable[[Intent, Any], None]) -> None:
        self._change_listeners.append(cb)

    def add_outcome_listener(self, cb: Callable[[ReconcileOutcome], None]) -> None:
        self._outcome_listeners.append(cb)

    def last_outcome(self, intent: Intent) -> Optional[ReconcileOutcome]:
        return self._outcomes.get(intent)

    def busy(self, intent: Intent) -> bool:
        entry = self._tasks.get(intent)
        return entry is not None and not entry[0].done()

    async def wait(self, intent: Intent) -> Optional[ReconcileOutcome]:
        """Outcome of the task now owning `intent`; None if idle or superseded."""
        entry = self._tasks.get(intent)
        if entry is None:
            return None
        task = entry[0]
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    # -----------------------------
    # Task supervision
    # -----------------------------
    def _abandon(self, intent: Intent) -> None:
        entry = self._tasks.pop(intent, None)
        if entry is None:
            return
        task, scope = entry
        scope.cancel()
        if not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _dispatch(self, intent: Intent) -> None:
        self._abandon(intent)
        slot = self._slots[intent]
        if slot.value is None or not self.running:
            return
        scope = Scope()
        task = asyncio.create_task(
            self._supervise(intent, slot.value, slot.generation, scope),
            name=f"reconcile {intent.value}",
        )
        self._tasks[intent] = (task, scope)

    async def _supervise(self, intent: Intent, value: Any, generation: int,
                         scope: Scope) -> Optional[ReconcileOutcome]:
        reconciler = RECONCILERS[intent](self.session, self.timings)
        try:
            attempts = await reconciler.run(value, scope)
        except Abandoned:
            log.debug("%s request dropped before it finished", intent.value)
            return None
        except ReconcileError as e:
            log.error("%s after %d attempts: %s", e.args[0], e.attempts, e.cause or "no match")
            outcome = ReconcileOutcome(intent, value, ok=False, attempts=e.attempts,
                                       error=e, finished_at=time.time())
        else:
            outcome = ReconcileOutcome(intent, value, ok=True, attempts=attempts,
                                       finished_at=time.time())
        scope.cancel()
        self._finish(intent, generation, outcome)
        return outcome

    def _finish(self, intent: Intent, generation: int, outcome: ReconcileOutcome) -> None:
        self._outcomes[intent] = outcome
        entry = self._tasks.get(intent)
        if entry is not None and entry[0] is asyncio.current_task():
            del self._tasks[intent]
        # A newer request owns the slot; leave it alone.
        if self._slots[intent].generation == generation:
            self._store(intent, None)
        for cb in list(self._outcome_listeners):
            try:
                cb(outcome)
            except Exception:
                log.exception("outcome listener failed")

    # -----------------------------
    # Reporting
    # -----------------------------
    def snapshot(self) -> Dict[str, Any]:
        if self.session is not None:
            session = self.session.status()
        else:
            session = {"url": self.session_config.url, "state": "disconnected", "connected": False}
        return {
            "running": self.running,
            "session": session,
            "pending": {i.value: _jsonable(s.value) for i, s in self._slots.items()},
            "busy": {i.value: self.busy(i) for i in Intent},
            "outcomes": {i.value: o.to_dict() for i, o in self._outcomes.items()},
        }
