"""
transport.py

Session handle on top of obsws-python (OBS WebSocket v5).

A handle exposes the four coroutines the rest of the package relies on:

    await handle.open()                 connect + identify (raises on failure)
    await handle.call(request)          one request -> DeviceResponse
    await handle.call_batch(requests)   one RequestBatch -> [DeviceResponse]
    await handle.wait_closed()          returns once the connection is gone
    await handle.close()

obsws-python is synchronous, so every round trip runs in the loop's default
executor. The three reconcilers share one websocket; a lock keeps their
request/response pairs from interleaving.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
import uuid
from typing import List, Optional, Sequence

import obsws_python as obs
from obsws_python.error import OBSSDKRequestError

from . import protocol
from .config import SessionConfig
from .protocol import DeviceError, DeviceRequest, DeviceResponse

log = logging.getLogger(__name__)

OP_REQUEST_BATCH = 8
OP_REQUEST_BATCH_RESPONSE = 9
EXECUTION_SERIAL_REALTIME = 0


class ObsTransport:
    def __init__(self, session: SessionConfig, *, timeout: float = 5.0, heartbeat: float = 2.0):
        self.session = session
        self.timeout = timeout
        self.heartbeat = heartbeat
        self.client: Optional[obs.ReqClient] = None
        self._lock = threading.Lock()
        self._closed = asyncio.Event()

    def __repr__(self) -> str:
        return f"<ObsTransport {self.session.url} open={self.is_open}>"

    @property
    def is_open(self) -> bool:
        return self.client is not None and not self._closed.is_set()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def open(self) -> None:
        try:
            self.client = await self._run(self._connect)
        except Exception as e:
            raise DeviceError(f"cannot connect to {self.session.url}: {e}") from e

    def _connect(self) -> obs.ReqClient:
        return obs.ReqClient(
            host=self.session.address,
            port=self.session.port,
            password=self.session.password or "",
            timeout=self.timeout,
        )

    async def close(self) -> None:
        client, self.client = self.client, None
        self._closed.set()
        if client is None:
            return
        try:
            await self._run(client.disconnect)
        except Exception as e:
            log.debug("disconnect from %s raised: %s", self.session.url, e)

    async def wait_closed(self) -> None:
        """Resolve once OBS goes away (probed with GetVersion) or close() runs."""
        while not self._closed.is_set():
            try:
                await asyncio.wait_for(self._closed.wait(), self.heartbeat)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.call(protocol.get_version())
            except DeviceError as e:
                if e.code is not None:
                    # OBS answered, it just did not like the request
                    continue
                log.debug("liveness probe on %s failed: %s", self.session.url, e)
                return

    # -----------------------------
    # Requests
    # -----------------------------
    def _require_client(self, request_type: str) -> obs.ReqClient:
        client = self.client
        if client is None or self._closed.is_set():
            raise DeviceError("OBS not connected", request_type=request_type)
        return client

    async def _round_trip(self, fn, *args):
        try:
            return await self._run(fn, *args)
        except DeviceError as e:
            if e.code is None and not self._closed.is_set():
                # anything but a rejection from OBS means the link is gone
                log.debug("marking %s closed after: %s", self.session.url, e)
                self._closed.set()
            raise

    async def call(self, request: DeviceRequest) -> DeviceResponse:
        return await self._round_trip(self._send, request)

    async def call_batch(self, requests: Sequence[DeviceRequest]) -> List[DeviceResponse]:
        if not requests:
            return []
        return await self._round_trip(self._send_batch, list(requests))

    def _send(self, request: DeviceRequest) -> DeviceResponse:
        client = self._require_client(request.request_type)
        with self._lock:
            try:
                data = client.send(request.request_type, request.request_data or None, raw=True)
            except OBSSDKRequestError as e:
                raise DeviceError(str(e), request_type=request.request_type,
                                  code=int(getattr(e, "code", 0) or 0)) from e
            except Exception as e:
                raise DeviceError(f"{request.request_type} failed: {e}",
                                  request_type=request.request_type) from e
        return DeviceResponse(request.request_type, data=dict(data or {}))

    def _send_batch(self, requests: List[DeviceRequest]) -> List[DeviceResponse]:
        client = self._require_client("RequestBatch")
        batch_id = uuid.uuid4().hex
        payload = {
            "op": OP_REQUEST_BATCH,
            "d": {
                "requestId": batch_id,
                "haltOnFailure": False,
                "executionType": EXECUTION_SERIAL_REALTIME,
                "requests": [r.to_wire(str(i)) for i, r in enumerate(requests)],
            },
        }
        with self._lock:
            try:
                ws = client.base_client.ws
                ws.send(json.dumps(payload))
                while True:
                    reply = json.loads(ws.recv())
                    d = reply.get("d") or {}
                    if reply.get("op") == OP_REQUEST_BATCH_RESPONSE and d.get("requestId") == batch_id:
                        break
                return [DeviceResponse.from_wire(r) for r in d.get("results") or []]
            except Exception as e:
                raise DeviceError(f"request batch failed: {e}", request_type="RequestBatch") from e


def obs_transport_factory(timeout: float = 5.0, heartbeat: float = 2.0):
    """Build the default `SessionConfig -> handle` factory for SessionManager."""
    def factory(session: SessionConfig) -> ObsTransport:
        return ObsTransport(session, timeout=timeout, heartbeat=heartbeat)
    return factory
