"""
intents.py

The three pieces of desired OBS state a caller can ask for.

Values are immutable. A slot holding one of them means "please make OBS look
like this"; the controller empties the slot once the request has been dealt
with.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from .gain import clamp_fraction

DEFAULT_EFFECT = "Cut"
DEFAULT_DURATION_MS = 50


class Intent(Enum):
    PREVIEW_SCENE = "preview_scene"
    PROGRAM_TRANSITION = "program_transition"
    VOLUME_SET = "volume_set"


@dataclass(frozen=True)
class DesiredPreviewScene:
    scene_name: str

    def to_dict(self) -> dict:
        return {"scene": self.scene_name}


@dataclass(frozen=True)
class DesiredTransition:
    target_scene: str
    effect_name: str = DEFAULT_EFFECT
    duration_ms: int = DEFAULT_DURATION_MS

    @classmethod
    def build(cls, scene: str, effect: Optional[str] = None, delay_ms=None) -> "DesiredTransition":
        return cls(target_scene=scene, effect_name=effect or DEFAULT_EFFECT,
                   duration_ms=coerce_duration(delay_ms))

    def to_dict(self) -> dict:
        return {"scene": self.target_scene, "effect": self.effect_name, "delayMs": self.duration_ms}


@dataclass(frozen=True)
class VolumeEntry:
    device_name: str
    volume_fraction: float
    mute: Optional[bool] = None

    def __post_init__(self):
        # Out of range is clamped, never rejected.
        object.__setattr__(self, "volume_fraction", clamp_fraction(self.volume_fraction))

    def to_dict(self) -> dict:
        return {"name": self.device_name, "volume": self.volume_fraction, "mute": self.mute}


DesiredVolumeSet = Tuple[VolumeEntry, ...]


def coerce_duration(value) -> int:
    """Transition length in ms; missing, zero or garbage falls back to 50."""
    if value is None or isinstance(value, bool):
        return DEFAULT_DURATION_MS
    try:
        ms = int(float(value))
    except (TypeError, ValueError):
        return DEFAULT_DURATION_MS
    return ms if ms > 0 else DEFAULT_DURATION_MS


def coerce_mute(value) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def normalize_preview(value) -> Optional[DesiredPreviewScene]:
    if value is None:
        return None
    if isinstance(value, DesiredPreviewScene):
        return value if value.scene_name else None
    name = str(value)
    return DesiredPreviewScene(name) if name else None


def normalize_transition(value) -> Optional[DesiredTransition]:
    if value is None:
        return None
    if isinstance(value, DesiredTransition):
        return value if value.target_scene else None
    if isinstance(value, str):
        return DesiredTransition.build(value) if value else None
    if isinstance(value, dict):
        scene = str(value.get("scene") or value.get("target_scene") or "")
        if not scene:
            return None
        return DesiredTransition.build(
            scene,
            value.get("effect") or value.get("effect_name"),
            value.get("delayMs", value.get("duration_ms")),
        )
    raise TypeError(f"cannot build a transition from {type(value).__name__}")


def normalize_volumes(value: Optional[Iterable]) -> Optional[DesiredVolumeSet]:
    """Tuple of VolumeEntry, or None for an absent/empty request."""
    if value is None:
        return None
    entries = []
    for item in value:
        if isinstance(item, VolumeEntry):
            entries.append(item)
        elif isinstance(item, dict):
            name = str(item.get("name") or item.get("device_name") or "")
            if not name:
                raise ValueError("volume entry needs a device name")
            entries.append(VolumeEntry(
                name,
                item.get("volume", item.get("volume_fraction", 0.0)),
                coerce_mute(item.get("mute")),
            ))
        else:
            raise TypeError(f"cannot build a volume entry from {type(item).__name__}")
    return tuple(entries) or None
