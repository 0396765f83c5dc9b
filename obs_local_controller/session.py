"""
session.py

Keeps exactly one usable connection to OBS alive.

SessionManager runs a connect loop (retry every 250 ms, forever), watches the
live handle, and on an unexpected close waits 500 ms and connects again. The
live handle is published through a HandleCell: one writer (the manager),
many readers (the reconcilers), swapped whole and announced to waiters.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from .config import SessionConfig, Timings
from .transport import obs_transport_factory

log = logging.getLogger(__name__)


class HandleCell:
    """Single-writer / multi-reader slot for the live session handle."""

    def __init__(self):
        self._handle: Any = None
        self._changed = asyncio.Event()
        self.generation = 0

    @property
    def current(self) -> Any:
        return self._handle

    def publish(self, handle: Any) -> None:
        self._handle = handle
        self._bump()

    def clear(self) -> Any:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._bump()
        return handle

    def _bump(self) -> None:
        self.generation += 1
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def wait_changed(self, timeout: float) -> bool:
        """Wait up to `timeout` for the next publish/clear. True if one happened."""
        changed = self._changed
        try:
            await asyncio.wait_for(changed.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False


class SessionManager:
    def __init__(self, config: SessionConfig, *,
                 transport_factory: Optional[Callable[[SessionConfig], Any]] = None,
                 timings: Optional[Timings] = None):
        self.config = config
        self.timings = timings or Timings()
        self._factory = transport_factory or obs_transport_factory()
        self.cell = HandleCell()

        self.running = False
        self.connecting = False
        self.connect_attempts = 0
        self.reconnect_count = 0
        self.connected_since: Optional[float] = None
        self.last_error: str = ""

        self._stopped = asyncio.Event()
        self._connect_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def handle(self) -> Any:
        return self.cell.current

    @property
    def connected(self) -> bool:
        return self.cell.current is not None

    @property
    def state(self) -> str:
        if not self.running:
            return "torn_down" if self._stopped.is_set() else "disconnected"
        if self.connected:
            return "connected"
        return "connecting"

    def status(self) -> dict:
        return {
            "url": self.config.url,
            "state": self.state,
            "connected": self.connected,
            "connect_attempts": self.connect_attempts,
            "reconnect_count": self.reconnect_count,
            "connected_since": self.connected_since,
            "last_error": self.last_error,
        }

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def start(self) -> None:
        if self.running or self._stopped.is_set():
            return
        self.running = True
        self._spawn_connect()

    async def close(self) -> None:
        if self._stopped.is_set():
            return
        log.debug("disconnecting...")
        self.running = False
        self._stopped.set()

        watch, self._watch_task = self._watch_task, None
        if watch is not None and watch is not asyncio.current_task():
            watch.cancel()

        handle = self.cell.clear()
        self.connected_since = None
        if handle is not None:
            await handle.close()

        # Not cancelled: a connect in flight must get to close what it opens.
        task = self._connect_task
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=1.0)

    async def __aenter__(self) -> "SessionManager":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _spawn_connect(self) -> None:
        self._connect_task = asyncio.create_task(self._connect_loop(), name=f"obs-connect {self.config.url}")

    async def _pause(self, seconds: float) -> None:
        """Sleep, but wake straight away on teardown."""
        try:
            await asyncio.wait_for(self._stopped.wait(), seconds)
        except asyncio.TimeoutError:
            pass

    # -----------------------------
    # Connect / reconnect
    # -----------------------------
    async def _connect_loop(self) -> None:
        url = self.config.url
        self.connecting = True
        try:
            while self.running:
                handle = self._factory(self.config)
                self.connect_attempts += 1
                try:
                    log.debug("trying to connect to '%s'...", url)
                    await handle.open()
                except Exception as e:
                    self.last_error = str(e)
                    log.debug("connection failed: %s", e)
                    await handle.close()
                    await self._pause(self.timings.connect_retry)
                    continue

                if not self.running:
                    log.debug("torn down while connecting, dropping the new session")
                    await handle.close()
                    return

                # The close watcher must exist before anyone can see the handle.
                self._watch_task = asyncio.create_task(self._watch(handle), name=f"obs-watch {url}")
                self.last_error = ""
                self.connected_since = time.time()
                self.cell.publish(handle)
                log.info("connected to %s", url)
                return
        finally:
            self.connecting = False

    async def _watch(self, handle: Any) -> None:
        await handle.wait_closed()
        if not self.running or self.cell.current is not handle:
            return
        log.warning("connection to %s closed, reconnecting in %d ms",
                    self.config.url, int(self.timings.reconnect_delay * 1000))
        self.cell.clear()
        self.connected_since = None
        await handle.close()
        await self._pause(self.timings.reconnect_delay)
        if not self.running:
            return
        self.reconnect_count += 1
        self._spawn_connect()
