"""
reconcilers.py

Converge-and-verify loops, one per intent.

Each run waits for a live session, applies the desired state in one request
batch, waits for OBS to settle, reads the state back and compares. On a
mismatch it tries again, up to the intent's attempt budget, then raises
ReconcileError. A failed round trip (stale handle, rejected request) counts
as a mismatch.

Every wait checks the task's Scope before and after sleeping; once the scope
is cancelled the run stops with Abandoned and sends nothing further.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from . import protocol
from .config import Timings
from .errors import ReconcileError
from .gain import fraction_to_db
from .intents import DesiredPreviewScene, DesiredTransition, DesiredVolumeSet, Intent
from .protocol import DeviceError, DeviceRequest, DeviceResponse

log = logging.getLogger(__name__)


class Abandoned(Exception):
    """The request this task was working on is no longer wanted."""


class Scope:
    """The "still relevant" flag a reconciliation task closes over."""

    def __init__(self):
        self.relevant = True

    def cancel(self) -> None:
        self.relevant = False

    def check(self) -> None:
        if not self.relevant:
            raise Abandoned()

    async def sleep(self, seconds: float) -> None:
        self.check()
        await asyncio.sleep(seconds)
        self.check()


class Reconciler:
    intent: Intent
    max_attempts: int = 5
    # Used in debug lines: "waiting OBS connection before <doing>..."
    doing: str = ""
    success_text: str = ""
    retry_text: str = ""

    def __init__(self, session, timings: Optional[Timings] = None):
        self.session = session
        self.timings = timings or Timings()

    async def wait_for_handle(self, scope: Scope) -> Any:
        while True:
            scope.check()
            if not self.session.running:
                raise Abandoned()
            handle = self.session.handle
            if handle is not None:
                return handle
            log.debug("waiting OBS connection before %s...", self.doing)
            await self.session.cell.wait_changed(self.timings.handle_poll)

    async def run(self, value: Any, scope: Scope) -> int:
        """Drive OBS to `value`. Returns the apply attempts used (0 = nothing to do)."""
        handle = await self.wait_for_handle(scope)
        if await self.already_satisfied(handle, value, scope):
            return 0

        plan = self.prepare(value)
        cause = ""
        for attempt in range(1, self.max_attempts + 1):
            handle = await self.wait_for_handle(scope)
            try:
                if await self.attempt(handle, plan, scope):
                    log.debug(self.success_text)
                    return attempt
                cause = "read-back mismatch"
            except DeviceError as e:
                cause = str(e)
                await scope.sleep(self.timings.verify_delay)
            log.debug("%s (attempt %d/%d: %s)", self.retry_text, attempt, self.max_attempts, cause)
        raise ReconcileError(self.intent, cause, self.max_attempts)

    async def already_satisfied(self, handle: Any, value: Any, scope: Scope) -> bool:
        return False

    def prepare(self, value: Any) -> Any:
        return value

    async def attempt(self, handle: Any, plan: Any, scope: Scope) -> bool:
        raise NotImplementedError


class PreviewSceneReconciler(Reconciler):
    intent = Intent.PREVIEW_SCENE
    max_attempts = 5
    doing = "changing the preview scene"
    success_text = "preview scene set successfully!"
    retry_text = "failed to set the preview scene, retrying..."

    async def attempt(self, handle, plan: DesiredPreviewScene, scope: Scope) -> bool:
        await handle.call_batch([
            protocol.enable_studio_mode(True),
            protocol.set_preview_scene(plan.scene_name),
        ])
        await scope.sleep(self.timings.verify_delay)
        resp = (await handle.call(protocol.get_preview_scene())).raise_for_status()
        return resp.get(protocol.PREVIEW_SCENE_FIELD) == plan.scene_name


class ProgramTransitionReconciler(Reconciler):
    intent = Intent.PROGRAM_TRANSITION
    max_attempts = 10
    doing = "changing scenes"
    success_text = "scene changed successfully!"
    retry_text = "failed to change the scene, retrying..."

    async def program_scene(self, handle) -> Optional[str]:
        resp = (await handle.call(protocol.get_program_scene())).raise_for_status()
        return resp.get(protocol.PROGRAM_SCENE_FIELD)

    async def already_satisfied(self, handle, value: DesiredTransition, scope: Scope) -> bool:
        try:
            current = await self.program_scene(handle)
        except DeviceError as e:
            log.debug("could not read the program scene: %s", e)
            return False
        scope.check()
        if current == value.target_scene:
            log.debug("'%s' is already live, nothing to do", current)
            return True
        return False

    def prepare(self, value: DesiredTransition) -> List[DeviceRequest]:
        return [
            protocol.enable_studio_mode(True),
            protocol.set_preview_scene(value.target_scene),
            protocol.set_transition_effect(value.effect_name),
            protocol.set_transition_duration(value.duration_ms),
            # OBS drops a transition triggered right after it was configured.
            protocol.sleep(self.timings.transition_settle_ms),
            protocol.trigger_transition(),
        ]

    async def attempt(self, handle, plan: List[DeviceRequest], scope: Scope) -> bool:
        await handle.call_batch(plan)
        await scope.sleep(self.timings.verify_delay)
        target = plan[1].request_data["sceneName"]
        return await self.program_scene(handle) == target


@dataclass(frozen=True)
class VolumeStep:
    apply: DeviceRequest
    verify: DeviceRequest
    field: str
    expected: Any

    def matches(self, response: DeviceResponse) -> bool:
        if not response.ok:
            return False
        actual = response.get(self.field)
        if actual is None:
            return False
        if self.field == protocol.INPUT_VOLUME_DB_FIELD:
            # whole dB only; OBS hands back floats that never compare equal
            try:
                return int(float(actual)) == int(self.expected)
            except (TypeError, ValueError, OverflowError):
                return False
        return bool(actual) == bool(self.expected)


class VolumeReconciler(Reconciler):
    intent = Intent.VOLUME_SET
    max_attempts = 5
    doing = "changing the volumes"
    success_text = "volumes set successfully!"
    retry_text = "failed to set the volumes, retrying..."

    def prepare(self, value: DesiredVolumeSet) -> List[VolumeStep]:
        steps: List[VolumeStep] = []
        for entry in value:
            name = entry.device_name
            if entry.mute is not None:
                steps.append(VolumeStep(
                    protocol.set_input_mute(name, entry.mute),
                    protocol.get_input_mute(name),
                    protocol.INPUT_MUTED_FIELD,
                    entry.mute,
                ))
            db = fraction_to_db(entry.volume_fraction)
            steps.append(VolumeStep(
                protocol.set_input_volume_db(name, db),
                protocol.get_input_volume_db(name),
                protocol.INPUT_VOLUME_DB_FIELD,
                db,
            ))
        return steps

    async def attempt(self, handle, plan: List[VolumeStep], scope: Scope) -> bool:
        await handle.call_batch([s.apply for s in plan])
        await scope.sleep(self.timings.verify_delay)
        responses = await handle.call_batch([s.verify for s in plan])
        if len(responses) != len(plan):
            log.debug("expected %d read-backs, got %d", len(plan), len(responses))
            return False
        return all(step.matches(resp) for step, resp in zip(plan, responses))


RECONCILERS = {
    Intent.PREVIEW_SCENE: PreviewSceneReconciler,
    Intent.PROGRAM_TRANSITION: ProgramTransitionReconciler,
    Intent.VOLUME_SET: VolumeReconciler,
}
