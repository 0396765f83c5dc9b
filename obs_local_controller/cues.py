"""
cues.py

MIDI cue input: a NOTE_ON on the configured channel fires the cue mapped to
that note in MIDI_CUES.

    {60: {"preview": "Camera 2"},
     61: {"transition": "Camera 2", "effect": "Fade", "delayMs": 300},
     62: {"volume": "Mic/Aux", "level": 80, "mute": False}}

"level" is a percentage, like the slider on the web HUD.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import mido

from .config import Config
from .intents import DesiredTransition, VolumeEntry, coerce_mute

log = logging.getLogger(__name__)

RECONNECT_SECONDS = 2.0
POLL_SECONDS = 0.02


def _safe_lower(s: Any) -> str:
    return str(s or "").lower()


class MidiCueListener:
    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.inport = None
        self.port_name: str = ""
        self.last_error: str = "not opened yet"

    def open(self) -> bool:
        """Open the first input whose name contains MIDI_INPUT_PORT_SUBSTRING."""
        wanted = _safe_lower(self.cfg.MIDI_INPUT_PORT_SUBSTRING)
        try:
            names = mido.get_input_names()
            name = next((n for n in names if wanted in _safe_lower(n)), None)
            if name is None:
                self.last_error = (f"no MIDI input like '{self.cfg.MIDI_INPUT_PORT_SUBSTRING}' "
                                   f"among: {', '.join(names) or '-'}")
                return False
            self.inport = mido.open_input(name)
        except Exception as e:
            # mido backends raise their own types (rtmidi, portmidi, missing backend)
            self.inport = None
            self.last_error = str(e)
            return False
        self.port_name = name
        self.last_error = ""
        return True

    def is_connected(self) -> bool:
        return self.inport is not None

    def close(self) -> None:
        port, self.inport = self.inport, None
        self.port_name = ""
        if port is not None:
            try:
                port.close()
            except Exception as e:
                log.debug("closing MIDI port raised: %s", e)

    def poll(self, controller) -> int:
        """Fire the cues for every pending message. Returns how many fired."""
        if self.inport is None:
            return 0
        try:
            messages = list(self.inport.iter_pending())
        except Exception as e:
            log.warning("MIDI input %s lost: %s", self.port_name, e)
            self.close()
            self.last_error = f"read error: {e}"
            return 0
        return sum(1 for msg in messages if self.dispatch(msg, controller))

    def note_on(self, msg) -> Optional[int]:
        """Note number of a real NOTE_ON (velocity > 0) on our channel, else None."""
        if getattr(msg, "type", "") != "note_on":
            return None
        if getattr(msg, "channel", -1) + 1 != self.cfg.MIDI_CHANNEL_1_BASED:
            return None
        # NOTE_ON with velocity 0 is a NOTE_OFF.
        if (getattr(msg, "velocity", 0) or 0) <= 0:
            return None
        return getattr(msg, "note", None)

    def cue_for(self, msg) -> Optional[Dict[str, Any]]:
        note = self.note_on(msg)
        if note is None:
            return None
        return (self.cfg.MIDI_CUES or {}).get(note)

    def dispatch(self, msg, controller) -> bool:
        """Fire the cue for `msg`, if any. True when something was requested."""
        cue = self.cue_for(msg)
        if not cue:
            return False
        if cue.get("preview"):
            log.info("MIDI: note %s -> preview '%s'", msg.note, cue["preview"])
            controller.set_preview_scene(str(cue["preview"]))
            return True
        if cue.get("transition"):
            target = DesiredTransition.build(str(cue["transition"]), cue.get("effect"), cue.get("delayMs"))
            log.info("MIDI: note %s -> transition to '%s' (%s, %d ms)",
                     msg.note, target.target_scene, target.effect_name, target.duration_ms)
            controller.set_transition(target)
            return True
        if cue.get("volume"):
            try:
                fraction = float(cue.get("level", 0)) / 100.0
            except (TypeError, ValueError):
                fraction = 0.0
            entry = VolumeEntry(str(cue["volume"]), fraction, coerce_mute(cue.get("mute")))
            log.info("MIDI: note %s -> volume '%s' %.0f%%", msg.note, entry.device_name,
                     entry.volume_fraction * 100)
            controller.set_volumes([entry])
            return True
        log.warning("MIDI: note %s has a cue with nothing to do: %r", msg.note, cue)
        return False

    async def run(self, controller, stop: asyncio.Event) -> None:
        """Poll the port until `stop` is set, reopening it when it goes away."""
        try:
            while not stop.is_set():
                if self.inport is None:
                    if not self.open():
                        log.debug("MIDI input not open: %s", self.last_error)
                        try:
                            await asyncio.wait_for(stop.wait(), RECONNECT_SECONDS)
                        except asyncio.TimeoutError:
                            pass
                        continue
                    log.info("MIDI input open: %s", self.port_name)
                self.poll(controller)
                await asyncio.sleep(POLL_SECONDS)
        finally:
            self.close()
