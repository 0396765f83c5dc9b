"""
app.py

Wires the pieces together for a long-running agent: logging, the controller,
the web HUD and (optionally) MIDI cues. Runs until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from .config import Config
from .controller import Controller
from .cues import MidiCueListener
from .logs import setup_logging
from .transport import obs_transport_factory
from .web import WebHud

log = logging.getLogger(__name__)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass


async def run(cfg: Config, stop: Optional[asyncio.Event] = None) -> None:
    recent = setup_logging(cfg)
    stop = stop or asyncio.Event()
    _install_signal_handlers(stop)

    session = cfg.session()
    controller = Controller(
        debug=cfg.DEBUG,
        address=session.address,
        port=session.port,
        password=session.password,
        transport_factory=obs_transport_factory(cfg.OBS_TIMEOUT_SECONDS, cfg.OBS_HEARTBEAT_SECONDS),
    )
    log.info("=== OBS local controller starting (OBS at %s) ===", session.url)

    hud: Optional[WebHud] = None
    midi_task: Optional[asyncio.Task] = None
    async with controller:
        try:
            if cfg.WEB_ENABLED:
                hud = WebHud(controller, cfg, recent)
                try:
                    await hud.start()
                except OSError as e:
                    log.error("WEB: could not start HUD on %s:%s: %s", cfg.WEB_HOST, cfg.WEB_PORT, e)
                    hud = None
            if cfg.MIDI_ENABLED:
                midi_task = asyncio.create_task(MidiCueListener(cfg).run(controller, stop), name="midi-cues")

            await stop.wait()
            log.info("stopping...")
        finally:
            stop.set()
            if midi_task is not None:
                await asyncio.gather(midi_task, return_exceptions=True)
            if hud is not None:
                await hud.stop()
    log.info("=== OBS local controller stopped ===")
