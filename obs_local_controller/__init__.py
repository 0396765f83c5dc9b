"""OBS local controller: keeps a local OBS converging on the requested
preview scene, program transition and audio levels."""

from .config import Config, SessionConfig, Timings, load_config
from .controller import Controller
from .errors import ReconcileError, ReconcileOutcome
from .gain import gain
from .intents import (
    DesiredPreviewScene,
    DesiredTransition,
    DesiredVolumeSet,
    Intent,
    VolumeEntry,
)
from .protocol import DeviceError

__version__ = "1.0.0"

__all__ = [
    "Config",
    "Controller",
    "DesiredPreviewScene",
    "DesiredTransition",
    "DesiredVolumeSet",
    "DeviceError",
    "Intent",
    "ReconcileError",
    "ReconcileOutcome",
    "SessionConfig",
    "Timings",
    "VolumeEntry",
    "gain",
    "load_config",
]
