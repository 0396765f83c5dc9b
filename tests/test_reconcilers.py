import asyncio
import dataclasses

import pytest

from conftest import wait_until
from obs_local_controller.config import SessionConfig
from obs_local_controller.errors import ReconcileError
from obs_local_controller.intents import (
    DesiredPreviewScene,
    DesiredTransition,
    Intent,
    VolumeEntry,
)
from obs_local_controller.reconcilers import (
    Abandoned,
    PreviewSceneReconciler,
    ProgramTransitionReconciler,
    Scope,
    VolumeReconciler,
)
from obs_local_controller.session import SessionManager


async def live_session(fake_obs, timings):
    mgr = SessionManager(SessionConfig(), transport_factory=fake_obs, timings=timings)
    mgr.start()
    await wait_until(lambda: mgr.connected)
    return mgr


# -----------------------------
# Preview scene
# -----------------------------

@pytest.mark.asyncio
async def test_preview_scene_applied_and_verified(fake_obs, timings):
    mgr = await live_session(fake_obs, timings)
    try:
        attempts = await PreviewSceneReconciler(mgr, timings).run(DesiredPreviewScene("Intro"), Scope())
    finally:
        await mgr.close()
    assert attempts == 1
    assert fake_obs.studio is True
    assert fake_obs.preview == "Intro"
    assert fake_obs.batch_types() == [["SetStudioModeEnabled", "SetCurrentPreviewScene"]]
    assert [c.request_type for c in fake_obs.calls] == ["GetCurrentPreviewScene"]


@pytest.mark.asyncio
async def test_preview_scene_gives_up_after_five(fake_obs, timings):
    fake_obs.ignore_preview = True
    mgr = await live_session(fake_obs, timings)
    try:
        with pytest.raises(ReconcileError) as exc:
            await PreviewSceneReconciler(mgr, timings).run(DesiredPreviewScene("Intro"), Scope())
    finally:
        await mgr.close()
    assert exc.value.intent is Intent.PREVIEW_SCENE
    assert exc.value.attempts == 5
    assert exc.value.args[0] == "failed to set the preview scene"
    assert len(fake_obs.batches) == 5


@pytest.mark.asyncio
async def test_nothing_sent_after_scope_cancelled_while_waiting_for_connection(fake_obs, timings):
    fake_obs.open_failures = 10_000
    mgr = SessionManager(SessionConfig(), transport_factory=fake_obs, timings=timings)
    mgr.start()
    scope = Scope()
    task = asyncio.create_task(PreviewSceneReconciler(mgr, timings).run(DesiredPreviewScene("Intro"), scope))
    await asyncio.sleep(0.03)
    scope.cancel()
    fake_obs.open_failures = 0
    with pytest.raises(Abandoned):
        await task
    await wait_until(lambda: mgr.connected)
    await asyncio.sleep(0.02)
    await mgr.close()
    assert fake_obs.batches == []
    assert fake_obs.calls == []


@pytest.mark.asyncio
async def test_teardown_aborts_the_wait_for_connection(fake_obs, timings):
    fake_obs.open_failures = 10_000
    mgr = SessionManager(SessionConfig(), transport_factory=fake_obs, timings=timings)
    mgr.start()
    task = asyncio.create_task(PreviewSceneReconciler(mgr, timings).run(DesiredPreviewScene("Intro"), Scope()))
    await asyncio.sleep(0.02)
    await mgr.close()
    with pytest.raises(Abandoned):
        await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_cancel_during_settle_skips_the_read_back(fake_obs, timings):
    slow = dataclasses.replace(timings, verify_delay=0.2)
    mgr = await live_session(fake_obs, slow)
    scope = Scope()
    task = asyncio.create_task(PreviewSceneReconciler(mgr, slow).run(DesiredPreviewScene("Intro"), scope))
    await wait_until(lambda: fake_obs.batches)
    scope.cancel()
    with pytest.raises(Abandoned):
        await task
    await mgr.close()
    assert fake_obs.calls == []


@pytest.mark.asyncio
async def test_stale_handle_counts_as_a_failed_attempt(fake_obs, timings):
    mgr = await live_session(fake_obs, timings)
    fake_obs.drop()
    try:
        attempts = await PreviewSceneReconciler(mgr, timings).run(DesiredPreviewScene("Intro"), Scope())
    finally:
        await mgr.close()
    assert attempts == 2
    assert len(fake_obs.transports) == 2
    assert fake_obs.preview == "Intro"


# -----------------------------
# Program transition
# -----------------------------

@pytest.mark.asyncio
async def test_transition_batch_layout(fake_obs, timings):
    mgr = await live_session(fake_obs, timings)
    try:
        attempts = await ProgramTransitionReconciler(mgr, timings).run(
            DesiredTransition("Gameplay", "Fade", 300), Scope())
    finally:
        await mgr.close()
    assert attempts == 1
    assert fake_obs.program == "Gameplay"
    assert (fake_obs.transition, fake_obs.duration) == ("Fade", 300)
    [batch] = fake_obs.batches
    assert [r.request_type for r in batch] == [
        "SetStudioModeEnabled",
        "SetCurrentPreviewScene",
        "SetCurrentSceneTransition",
        "SetCurrentSceneTransitionDuration",
        "Sleep",
        "TriggerStudioModeTransition",
    ]
    assert batch[4].request_data == {"sleepMillis": 100}


@pytest.mark.asyncio
async def test_transition_skipped_when_already_live(fake_obs, timings):
    fake_obs.program = "Gameplay"
    mgr = await live_session(fake_obs, timings)
    try:
        attempts = await ProgramTransitionReconciler(mgr, timings).run(
            DesiredTransition("Gameplay", "Fade", 300), Scope())
    finally:
        await mgr.close()
    assert attempts == 0
    assert fake_obs.batches == []
    assert [c.request_type for c in fake_obs.calls] == ["GetCurrentProgramScene"]


@pytest.mark.asyncio
async def test_transition_gives_up_after_ten(fake_obs, timings):
    fake_obs.ignore_transition = True
    mgr = await live_session(fake_obs, timings)
    try:
        with pytest.raises(ReconcileError) as exc:
            await ProgramTransitionReconciler(mgr, timings).run(DesiredTransition("Gameplay"), Scope())
    finally:
        await mgr.close()
    assert exc.value.attempts == 10
    assert exc.value.args[0] == "failed to change scene"
    assert len(fake_obs.batches) == 10


# -----------------------------
# Volume
# -----------------------------

@pytest.mark.asyncio
async def test_volume_mute_then_level(fake_obs, timings):
    mgr = await live_session(fake_obs, timings)
    try:
        attempts = await VolumeReconciler(mgr, timings).run((VolumeEntry("Mic", 0.5, False),), Scope())
    finally:
        await mgr.close()
    assert attempts == 1
    apply, verify = fake_obs.batches
    assert [(r.request_type, r.request_data) for r in apply] == [
        ("SetInputMute", {"inputName": "Mic", "inputMuted": False}),
        ("SetInputVolume", {"inputName": "Mic", "inputVolumeDb": -20.25}),
    ]
    assert [r.request_type for r in verify] == ["GetInputMute", "GetInputVolume"]
    assert fake_obs.inputs["Mic"] == {"db": -20.25, "muted": False}


@pytest.mark.asyncio
async def test_volume_without_mute_only_sets_level(fake_obs, timings):
    mgr = await live_session(fake_obs, timings)
    try:
        await VolumeReconciler(mgr, timings).run(
            (VolumeEntry("Mic", 1.0), VolumeEntry("Desktop", 0.0)), Scope())
    finally:
        await mgr.close()
    assert [r.request_type for r in fake_obs.batches[0]] == ["SetInputVolume", "SetInputVolume"]
    assert fake_obs.inputs["Mic"]["muted"] is True
    assert fake_obs.inputs["Desktop"]["db"] == -100.0


@pytest.mark.asyncio
async def test_volume_read_back_compares_whole_db(fake_obs, timings):
    # -20.25 comes back as -20.75: same whole dB
    fake_obs.volume_offset = -0.5
    mgr = await live_session(fake_obs, timings)
    try:
        attempts = await VolumeReconciler(mgr, timings).run((VolumeEntry("Mic", 0.5),), Scope())
    finally:
        await mgr.close()
    assert attempts == 1


@pytest.mark.asyncio
async def test_volume_gives_up_after_five(fake_obs, timings):
    fake_obs.volume_offset = -0.9
    mgr = await live_session(fake_obs, timings)
    try:
        with pytest.raises(ReconcileError) as exc:
            await VolumeReconciler(mgr, timings).run((VolumeEntry("Mic", 0.5),), Scope())
    finally:
        await mgr.close()
    assert exc.value.attempts == 5
    assert exc.value.cause == "read-back mismatch"
    assert str(exc.value) == "failed to set the volumes (read-back mismatch)"
    # one apply and one verify batch per attempt
    assert len(fake_obs.batches) == 10


@pytest.mark.asyncio
async def test_volume_unknown_input_never_matches(fake_obs, timings):
    mgr = await live_session(fake_obs, timings)
    try:
        with pytest.raises(ReconcileError):
            await VolumeReconciler(mgr, timings).run((VolumeEntry("Nope", 0.5, True),), Scope())
    finally:
        await mgr.close()


def test_volume_plan_sends_and_expects_the_converted_gain(timings):
    steps = VolumeReconciler(None, timings).prepare((VolumeEntry("Mic", 0.75, True), VolumeEntry("Desktop", 1.4)))
    assert [s.apply.request_type for s in steps] == ["SetInputMute", "SetInputVolume", "SetInputVolume"]
    assert steps[1].apply.request_data["inputVolumeDb"] == steps[1].expected == pytest.approx(-6.75)
    assert steps[2].expected == 0.0
    assert steps[0].expected is True
