"""
In-memory OBS for the tests.

FakeObs keeps just enough OBS state (studio mode, preview/program scene,
current transition, inputs) to answer every request the reconcilers send.
FakeTransport implements the session-handle interface on top of it and
records what was sent, so tests can assert on batches.
"""

import asyncio

import pytest

from obs_local_controller.config import SessionConfig, Timings
from obs_local_controller.protocol import DeviceError, DeviceResponse


FAST = Timings(connect_retry=0.01, reconnect_delay=0.02, handle_poll=0.01,
               verify_delay=0.005, transition_settle_ms=100)


class FakeObs:
    def __init__(self):
        self.open_failures = 0
        self.studio = False
        self.preview = "Start"
        self.program = "Start"
        self.transition = "Cut"
        self.duration = 300
        self.scenes = {"Start", "Intro", "Gameplay", "Outro"}
        self.inputs = {"Mic": {"db": 0.0, "muted": True}, "Desktop": {"db": -10.0, "muted": False}}

        # misbehaviour knobs
        self.ignore_preview = False
        self.ignore_transition = False
        self.volume_offset = 0.0

        self.batches = []
        self.calls = []
        self.transports = []

    # the SessionManager transport factory
    def __call__(self, session: SessionConfig) -> "FakeTransport":
        t = FakeTransport(self, session)
        self.transports.append(t)
        return t

    @property
    def live(self):
        return next((t for t in reversed(self.transports) if t.opened and not t.closed.is_set()), None)

    def drop(self):
        """OBS goes away under the current connection."""
        t = self.live
        if t is not None:
            t.closed.set()

    def batch_types(self):
        return [[r.request_type for r in b] for b in self.batches]

    def execute(self, req) -> DeviceResponse:
        rt, d = req.request_type, req.request_data
        ok = DeviceResponse(rt)
        if rt == "SetStudioModeEnabled":
            self.studio = bool(d["studioModeEnabled"])
            return ok
        if rt == "SetCurrentPreviewScene":
            if not self.studio:
                return DeviceResponse(rt, ok=False, code=506, comment="studio mode not active")
            if d["sceneName"] not in self.scenes:
                return DeviceResponse(rt, ok=False, code=600, comment="no such scene")
            if not self.ignore_preview:
                self.preview = d["sceneName"]
            return ok
        if rt == "GetCurrentPreviewScene":
            if not self.studio:
                return DeviceResponse(rt, ok=False, code=506, comment="studio mode not active")
            return DeviceResponse(rt, data={"currentPreviewSceneName": self.preview})
        if rt == "GetCurrentProgramScene":
            return DeviceResponse(rt, data={"currentProgramSceneName": self.program})
        if rt == "SetCurrentSceneTransition":
            self.transition = d["transitionName"]
            return ok
        if rt == "SetCurrentSceneTransitionDuration":
            self.duration = d["transitionDuration"]
            return ok
        if rt == "Sleep":
            return ok
        if rt == "TriggerStudioModeTransition":
            if not self.ignore_transition:
                self.program, self.preview = self.preview, self.program
            return ok
        if rt in ("SetInputMute", "GetInputMute", "SetInputVolume", "GetInputVolume"):
            inp = self.inputs.get(d["inputName"])
            if inp is None:
                return DeviceResponse(rt, ok=False, code=600, comment="no such input")
            if rt == "SetInputMute":
                inp["muted"] = bool(d["inputMuted"])
                return ok
            if rt == "GetInputMute":
                return DeviceResponse(rt, data={"inputMuted": inp["muted"]})
            if rt == "SetInputVolume":
                inp["db"] = float(d["inputVolumeDb"]) + self.volume_offset
                return ok
            return DeviceResponse(rt, data={"inputVolumeDb": inp["db"], "inputVolumeMul": 1.0})
        if rt == "GetVersion":
            return DeviceResponse(rt, data={"obsWebSocketVersion": "5.1.0"})
        return DeviceResponse(rt, ok=False, code=204, comment="unknown request type")


class FakeTransport:
    def __init__(self, obs: FakeObs, session: SessionConfig):
        self.obs = obs
        self.session = session
        self.opened = False
        self.close_calls = 0
        self.closed = asyncio.Event()

    async def open(self):
        await asyncio.sleep(0)
        if self.obs.open_failures > 0:
            self.obs.open_failures -= 1
            raise DeviceError(f"cannot connect to {self.session.url}: connection refused")
        self.opened = True

    async def close(self):
        self.close_calls += 1
        self.closed.set()

    async def wait_closed(self):
        await self.closed.wait()

    def _check(self, request_type):
        if not self.opened or self.closed.is_set():
            raise DeviceError("OBS not connected", request_type=request_type)

    async def call(self, request):
        await asyncio.sleep(0)
        self._check(request.request_type)
        self.obs.calls.append(request)
        return self.obs.execute(request).raise_for_status()

    async def call_batch(self, requests):
        await asyncio.sleep(0)
        self._check("RequestBatch")
        self.obs.batches.append(list(requests))
        return [self.obs.execute(r) for r in requests]


async def wait_until(predicate, timeout=2.0):
    """Poll `predicate` until true; fail the test after `timeout` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.002)


@pytest.fixture
def fake_obs():
    return FakeObs()


@pytest.fixture
def timings():
    return FAST
