"""
web.py

Web HUD: a small aiohttp app to drive the controller from a browser,
tablet or stream deck (anything that can POST JSON).

Routes:
    GET  /                 manual control page
    GET  /api/state        controller snapshot + recent log lines
    POST /api/preview      {"scene"}
    POST /api/transition   {"scene", "effect", "delayMs"}
    POST /api/volume       {"name", "volume" (0-100 %), "mute"}
                           or {"volumes": [{"name", "volume" (0-1), "mute"}]}
    GET  /ws               pushes state on every change; accepts
                           {"type": "cmd", "cmd": "preview"|"transition"|"volume", ...}

If WEB_TOKEN is set every route needs ?token=<WEB_TOKEN>.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import WSMsgType, web

from .config import Config
from .controller import Controller
from .intents import DesiredTransition, VolumeEntry, coerce_mute
from .logs import RecentLogBuffer

log = logging.getLogger(__name__)

HUD_LOG_LINES = 50


def _percent_to_fraction(value) -> float:
    try:
        return float(value) / 100.0
    except (TypeError, ValueError):
        return 0.0


class WebHud:
    def __init__(self, controller: Controller, cfg: Config,
                 recent: Optional[RecentLogBuffer] = None):
        self.controller = controller
        self.cfg = cfg
        self.recent = recent
        self._ws_clients: set = set()
        self._dirty = asyncio.Event()
        self._pump_task: Optional[asyncio.Task] = None
        self._runner: Optional[web.AppRunner] = None

        controller.add_change_listener(lambda intent, value: self._dirty.set())
        controller.add_outcome_listener(lambda outcome: self._dirty.set())

    # -----------------------------
    # Commands (shared by POST routes and the websocket)
    # -----------------------------
    def apply_command(self, cmd: str, data: Dict[str, Any]) -> None:
        """Raises ValueError for a malformed command."""
        if cmd == "preview":
            scene = str(data.get("scene") or "").strip()
            if not scene:
                raise ValueError("scene is required!")
            self.controller.set_preview_scene(scene)
        elif cmd == "transition":
            scene = str(data.get("scene") or "").strip()
            if not scene:
                raise ValueError("scene is required!")
            self.controller.set_transition(
                DesiredTransition.build(scene, data.get("effect") or None, data.get("delayMs"))
            )
        elif cmd == "volume":
            if isinstance(data.get("volumes"), list):
                entries = []
                for item in data["volumes"]:
                    if not isinstance(item, dict) or not str(item.get("name") or "").strip():
                        raise ValueError("volume name is required!")
                    entries.append(VolumeEntry(str(item["name"]).strip(), item.get("volume", 0.0),
                                               coerce_mute(item.get("mute"))))
                self.controller.set_volumes(entries)
            else:
                name = str(data.get("name") or "").strip()
                if not name:
                    raise ValueError("volume name is required!")
                self.controller.set_volumes([
                    VolumeEntry(name, _percent_to_fraction(data.get("volume", 0)),
                                coerce_mute(data.get("mute")))
                ])
        else:
            raise ValueError(f"unknown command: {cmd!r}")

    def payload(self) -> Dict[str, Any]:
        logs = self.recent.tail(HUD_LOG_LINES) if self.recent else []
        return {"type": "state", "state": self.controller.snapshot(), "logs": logs}

    # -----------------------------
    # aiohttp plumbing
    # -----------------------------
    @web.middleware
    async def _token_check(self, request: web.Request, handler):
        if self.cfg.WEB_TOKEN and request.query.get("token", "") != self.cfg.WEB_TOKEN:
            return web.Response(status=403, text="Forbidden")
        return await handler(request)

    async def _read_body(self, request: web.Request) -> Dict[str, Any]:
        if request.content_type == "application/json":
            try:
                data = await request.json()
            except ValueError:
                raise web.HTTPBadRequest(text=json.dumps({"ok": False, "error": "invalid JSON"}),
                                         content_type="application/json")
            return data if isinstance(data, dict) else {}
        return dict(await request.post())

    def _command_route(self, cmd: str):
        async def handler(request: web.Request) -> web.Response:
            data = await self._read_body(request)
            try:
                self.apply_command(cmd, data)
            except ValueError as e:
                return web.json_response({"ok": False, "error": str(e)}, status=400)
            log.info("WEB: %s %s", cmd, data)
            return web.json_response({"ok": True, "state": self.controller.snapshot()})
        return handler

    async def _index(self, request: web.Request) -> web.Response:
        return web.Response(text=INDEX_HTML, content_type="text/html", charset="utf-8")

    async def _state(self, request: web.Request) -> web.Response:
        return web.json_response(self.payload())

    async def _ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=20)
        await ws.prepare(request)
        self._ws_clients.add(ws)
        await ws.send_str(json.dumps(self.payload()))
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        continue
                    if not isinstance(data, dict) or data.get("type") != "cmd":
                        continue
                    try:
                        self.apply_command(str(data.get("cmd", "")), data)
                    except ValueError as e:
                        await ws.send_str(json.dumps({"type": "error", "error": str(e)}))
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            self._ws_clients.discard(ws)
        return ws

    def make_app(self) -> web.Application:
        app = web.Application(middlewares=[self._token_check])
        app.router.add_get("/", self._index)
        app.router.add_get("/api/state", self._state)
        app.router.add_post("/api/preview", self._command_route("preview"))
        app.router.add_post("/api/transition", self._command_route("transition"))
        app.router.add_post("/api/volume", self._command_route("volume"))
        app.router.add_get("/ws", self._ws)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        self._pump_task = asyncio.create_task(self._pump(), name="web-hud broadcast")

    async def _on_cleanup(self, app: web.Application) -> None:
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._pump_task is not None:
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
            self._pump_task = None

    async def _pump(self) -> None:
        while True:
            await self._dirty.wait()
            self._dirty.clear()
            await self.broadcast()

    async def broadcast(self) -> None:
        if not self._ws_clients:
            return
        text = json.dumps(self.payload())
        dead = []
        for ws in list(self._ws_clients):
            try:
                await ws.send_str(text)
            except (ConnectionResetError, RuntimeError):
                dead.append(ws)
        for ws in dead:
            self._ws_clients.discard(ws)

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host=host or self.cfg.WEB_HOST, port=int(port or self.cfg.WEB_PORT))
        await site.start()
        log.info("WEB: HUD at http://%s:%d", host or self.cfg.WEB_HOST, int(port or self.cfg.WEB_PORT))

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None


INDEX_HTML = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>OBS local controller</title>
<style>
 body { background: white; color: black; font-family: sans-serif; }
 div { margin: 4px 0; }
 #state { white-space: pre; font-family: monospace; font-size: 12px; }
</style>
</head>
<body>
<div><label for="set-scene">Scene: </label><input type="text" id="set-scene"></div>
<div><label for="set-transition">Transition: </label><input type="text" id="set-transition"></div>
<div><label for="set-delay">Delay: </label><input type="number" id="set-delay"></div>
<div><input type="button" value="Set preview" onclick="preview()"></div>
<div><input type="button" value="Change scene" onclick="transition()"></div>
<hr>
<div><label for="set-volume-name">Audio Device: </label><input type="text" id="set-volume-name"></div>
<div><label for="set-volume">Volume: </label>
 <input type="range" id="set-volume" min="0" max="100" value="0"
        oninput="document.getElementById('volume-pct').textContent = '(' + this.value + '%)'">
 <span id="volume-pct">(0%)</span></div>
<div><label for="set-muted">Mute: </label><input type="checkbox" id="set-muted"></div>
<div><input type="button" value="Update volume" onclick="volume()"></div>
<hr>
<div id="state"></div>
<script>
const token = new URLSearchParams(location.search).get('token');
const q = token ? ('?token=' + encodeURIComponent(token)) : '';
function val(id) { return document.getElementById(id).value; }
function post(path, body) {
  return fetch(path + q, {method: 'POST', headers: {'Content-Type': 'application/json'},
                          body: JSON.stringify(body)})
    .then(r => r.json()).then(r => { if (!r.ok) alert(r.error); });
}
function preview() { post('/api/preview', {scene: val('set-scene')}); }
function transition() {
  post('/api/transition', {scene: val('set-scene'), effect: val('set-transition'), delayMs: val('set-delay')});
}
function volume() {
  post('/api/volume', {name: val('set-volume-name'), volume: Number(val('set-volume')),
                       mute: document.getElementById('set-muted').checked});
}
function connect() {
  const ws = new WebSocket((location.protocol === 'https:' ? 'wss://' : 'ws://') + location.host + '/ws' + q);
  ws.onmessage = (ev) => {
    const msg = JSON.parse(ev.data);
    if (msg.type === 'state') {
      document.getElementById('state').textContent =
        JSON.stringify(msg.state, null, 2) + '\\n\\n' + (msg.logs || []).join('\\n');
    }
  };
  ws.onclose = () => setTimeout(connect, 1000);
}
connect();
</script>
</body>
</html>
"""
