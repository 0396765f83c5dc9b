"""
protocol.py

Requests understood by the OBS WebSocket v5 server, as plain values.

Reconcilers build lists of DeviceRequest and hand them to a session handle
(see transport.py); the handle answers with DeviceResponse objects in the
same order. Nothing in here touches the network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class DeviceError(Exception):
    """A round trip to OBS failed: dropped socket, timeout or rejected request."""

    def __init__(self, message: str, request_type: str = "", code: Optional[int] = None):
        super().__init__(message)
        self.request_type = request_type
        self.code = code


@dataclass(frozen=True)
class DeviceRequest:
    request_type: str
    request_data: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"requestType": self.request_type, "requestId": request_id}
        if self.request_data:
            payload["requestData"] = dict(self.request_data)
        return payload


@dataclass
class DeviceResponse:
    request_type: str
    ok: bool = True
    code: int = 100
    comment: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, result: Dict[str, Any]) -> "DeviceResponse":
        status = result.get("requestStatus") or {}
        return cls(
            request_type=str(result.get("requestType", "")),
            ok=bool(status.get("result", False)),
            code=int(status.get("code", 0) or 0),
            comment=str(status.get("comment", "") or ""),
            data=dict(result.get("responseData") or {}),
        )

    def get(self, key: str, default=None):
        return self.data.get(key, default)

    def raise_for_status(self) -> "DeviceResponse":
        if not self.ok:
            raise DeviceError(
                f"{self.request_type} rejected ({self.code}): {self.comment or 'no comment'}",
                request_type=self.request_type,
                code=self.code,
            )
        return self


# -----------------------------
# Request builders
# -----------------------------

def enable_studio_mode(enabled: bool = True) -> DeviceRequest:
    return DeviceRequest("SetStudioModeEnabled", {"studioModeEnabled": bool(enabled)})


def set_preview_scene(name: str) -> DeviceRequest:
    return DeviceRequest("SetCurrentPreviewScene", {"sceneName": name})


def get_preview_scene() -> DeviceRequest:
    return DeviceRequest("GetCurrentPreviewScene")


def get_program_scene() -> DeviceRequest:
    return DeviceRequest("GetCurrentProgramScene")


def set_transition_effect(name: str) -> DeviceRequest:
    return DeviceRequest("SetCurrentSceneTransition", {"transitionName": name})


def set_transition_duration(ms: int) -> DeviceRequest:
    return DeviceRequest("SetCurrentSceneTransitionDuration", {"transitionDuration": int(ms)})


def sleep(ms: int) -> DeviceRequest:
    """Server-side pause inside a batch; not a local wait."""
    return DeviceRequest("Sleep", {"sleepMillis": int(ms)})


def trigger_transition() -> DeviceRequest:
    return DeviceRequest("TriggerStudioModeTransition")


def set_input_mute(name: str, muted: bool) -> DeviceRequest:
    return DeviceRequest("SetInputMute", {"inputName": name, "inputMuted": bool(muted)})


def get_input_mute(name: str) -> DeviceRequest:
    return DeviceRequest("GetInputMute", {"inputName": name})


def set_input_volume_db(name: str, db: float) -> DeviceRequest:
    return DeviceRequest("SetInputVolume", {"inputName": name, "inputVolumeDb": float(db)})


def get_input_volume_db(name: str) -> DeviceRequest:
    return DeviceRequest("GetInputVolume", {"inputName": name})


def get_version() -> DeviceRequest:
    return DeviceRequest("GetVersion")


# Response fields read back by the reconcilers
PREVIEW_SCENE_FIELD = "currentPreviewSceneName"
PROGRAM_SCENE_FIELD = "currentProgramSceneName"
INPUT_MUTED_FIELD = "inputMuted"
INPUT_VOLUME_DB_FIELD = "inputVolumeDb"
