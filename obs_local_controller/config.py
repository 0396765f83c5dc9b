"""
config.py

Runtime configuration for the OBS local controller.

`Config` holds every knob (UPPER_CASE, edit defaults here or override them
from a JSON file). `SessionConfig` is the immutable slice that identifies one
OBS session; changing any of its fields means a new session. `Timings` holds
the fixed waits the reconciliation loops use against OBS.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

DEFAULT_ADDRESS = "localhost"
DEFAULT_PORT = 4455


@dataclass
class Config:
    """Configuration for the OBS local controller."""

    # ----------------------------
    # OBS WEBSOCKET
    # ----------------------------
    OBS_HOST: str = DEFAULT_ADDRESS
    OBS_PORT: int = DEFAULT_PORT
    OBS_PASSWORD: str = ""  # leave blank if auth is OFF in OBS WebSocket
    OBS_TIMEOUT_SECONDS: float = 5.0
    # How often an idle connection is probed to notice OBS going away.
    OBS_HEARTBEAT_SECONDS: float = 2.0

    DEBUG: bool = False

    # ----------------------------
    # WEB HUD
    # ----------------------------
    WEB_ENABLED: bool = True
    WEB_HOST: str = "127.0.0.1"
    WEB_PORT: int = 4456
    WEB_TOKEN: str = ""  # optional ?token=... check on every route
    WEB_LOG_LINES: int = 200

    # ----------------------------
    # LOGGING
    # ----------------------------
    LOG_TO_FILE_ENABLED: bool = False
    LOG_DIR: str = ""  # blank = current directory
    LOG_RUN_FILE_PREFIX: str = "obs_controller"
    LOG_RETENTION_COUNT: int = 30

    # ----------------------------
    # MIDI CUES
    # ----------------------------
    MIDI_ENABLED: bool = False
    MIDI_INPUT_PORT_SUBSTRING: str = "loopMIDI"  # partial match for port name
    MIDI_CHANNEL_1_BASED: int = 1
    # note -> cue, e.g. {60: {"transition": "Gameplay", "effect": "Fade", "delayMs": 300}}
    MIDI_CUES: Dict[int, Dict[str, Any]] = field(default_factory=dict)

    def session(self) -> "SessionConfig":
        return SessionConfig(
            address=self.OBS_HOST or DEFAULT_ADDRESS,
            port=int(self.OBS_PORT or DEFAULT_PORT),
            password=self.OBS_PASSWORD or None,
        )


@dataclass(frozen=True)
class SessionConfig:
    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    password: Optional[str] = None

    @property
    def url(self) -> str:
        return f"ws://{self.address}:{self.port}"

    @classmethod
    def build(cls, address: Optional[str] = None, port: Optional[int] = None,
              password: Optional[str] = None) -> "SessionConfig":
        return cls(address=address or DEFAULT_ADDRESS, port=int(port or DEFAULT_PORT),
                   password=password or None)


@dataclass(frozen=True)
class Timings:
    """Fixed waits (seconds, except the in-batch settle which OBS takes in ms)."""

    connect_retry: float = 0.25
    reconnect_delay: float = 0.5
    handle_poll: float = 0.25
    verify_delay: float = 0.25
    # The transition is ignored by OBS if triggered right after configuring it.
    transition_settle_ms: int = 100


# -----------------------------
# JSON overrides
# -----------------------------

def load_overrides_file(path: str) -> dict:
    """Read `{"version": 1, "overrides": {...}}` (or a legacy flat dict)."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning("could not read config overrides %s: %s", path, e)
        return {}
    if isinstance(data, dict) and isinstance(data.get("overrides"), dict):
        return data["overrides"]
    if isinstance(data, dict):
        return data
    return {}


def _coerce_cues(value) -> Dict[int, Dict[str, Any]]:
    cues: Dict[int, Dict[str, Any]] = {}
    for note, cue in dict(value).items():
        try:
            n = int(note)
        except (TypeError, ValueError):
            log.warning("ignoring MIDI cue with bad note %r", note)
            continue
        if isinstance(cue, dict):
            cues[n] = dict(cue)
    return cues


def apply_overrides(cfg: Config, overrides: dict) -> list:
    """Apply known fields, coerced to the default's type. Returns applied keys."""
    applied = []
    known = {f.name for f in fields(cfg)}
    for k, v in (overrides or {}).items():
        if k not in known:
            log.debug("ignoring unknown config key %s", k)
            continue
        cur = getattr(cfg, k)
        try:
            if k == "MIDI_CUES":
                if not isinstance(v, dict):
                    continue
                setattr(cfg, k, _coerce_cues(v))
            elif isinstance(cur, bool):
                setattr(cfg, k, bool(v))
            elif isinstance(cur, int):
                setattr(cfg, k, int(v))
            elif isinstance(cur, float):
                setattr(cfg, k, float(v))
            elif isinstance(cur, str):
                setattr(cfg, k, str(v))
            else:
                continue
        except (TypeError, ValueError):
            log.warning("ignoring config %s=%r (expected %s)", k, v, type(cur).__name__)
            continue
        applied.append(k)
    return applied


def load_config(path: Optional[str] = None) -> Config:
    cfg = Config()
    if path:
        apply_overrides(cfg, load_overrides_file(path))
    return cfg
