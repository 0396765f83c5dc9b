"""
Command line entry point.

    python -m obs_local_controller --addr 192.168.1.20 --pwd secret --debug
    python -m obs_local_controller --config controller.json --midi
"""

from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional

from . import __version__
from .app import run
from .config import load_config


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="obs-local-controller",
                                description="Keep a local OBS in the requested scene/audio state.")
    p.add_argument("--config", help="JSON overrides file ({\"version\": 1, \"overrides\": {...}})")
    p.add_argument("--addr", help="OBS websocket host (default localhost)")
    p.add_argument("--port", type=int, help="OBS websocket port (default 4455)")
    p.add_argument("--pwd", help="OBS websocket password")
    p.add_argument("--debug", action="store_true", help="verbose logging")
    p.add_argument("--web-host", help="web HUD bind address")
    p.add_argument("--web-port", type=int, help="web HUD port")
    p.add_argument("--no-web", action="store_true", help="do not start the web HUD")
    p.add_argument("--midi", action="store_true", help="listen for MIDI cues")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def config_from_args(args: argparse.Namespace):
    cfg = load_config(args.config)
    if args.addr:
        cfg.OBS_HOST = args.addr
    if args.port:
        cfg.OBS_PORT = args.port
    if args.pwd is not None:
        cfg.OBS_PASSWORD = args.pwd
    if args.debug:
        cfg.DEBUG = True
    if args.web_host:
        cfg.WEB_HOST = args.web_host
    if args.web_port:
        cfg.WEB_PORT = args.web_port
    if args.no_web:
        cfg.WEB_ENABLED = False
    if args.midi:
        cfg.MIDI_ENABLED = True
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    cfg = config_from_args(build_parser().parse_args(argv))
    try:
        asyncio.run(run(cfg))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
