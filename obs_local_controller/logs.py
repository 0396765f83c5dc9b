"""
logs.py

Logging for the agent: console, optional per-run log file (old runs pruned),
and a ring buffer of recent lines shown on the web HUD.
"""

from __future__ import annotations

import datetime as dt
import glob
import logging
import os
from collections import deque
from typing import List, Optional

from .config import Config

PACKAGE_LOGGER = "obs_local_controller"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
SHORT_FORMAT = "%(asctime)s %(message)s"


class RecentLogBuffer(logging.Handler):
    """Keeps the last N formatted lines in memory."""

    def __init__(self, maxlen: int = 200):
        super().__init__()
        self.lines = deque(maxlen=max(1, int(maxlen)))
        self.setFormatter(logging.Formatter(SHORT_FORMAT, datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def tail(self, count: Optional[int] = None) -> List[str]:
        lines = list(self.lines)
        if count is not None:
            lines = lines[-count:] if count > 0 else []
        return lines


def log_dir(cfg: Config) -> str:
    return (cfg.LOG_DIR or "").strip() or os.getcwd()


def cleanup_old_logs(cfg: Config, keep: Optional[int] = None) -> int:
    """Keep only the newest `keep` (default LOG_RETENTION_COUNT) run logs. Returns files removed."""
    pattern = os.path.join(log_dir(cfg), f"{cfg.LOG_RUN_FILE_PREFIX}_run_*.log")
    files = glob.glob(pattern)
    retention = max(0, int(cfg.LOG_RETENTION_COUNT if keep is None else keep))
    if len(files) <= retention:
        return 0
    files.sort(key=os.path.getmtime)
    removed = 0
    for path in files[:len(files) - retention]:
        try:
            os.remove(path)
            removed += 1
        except OSError as e:
            logging.getLogger(__name__).warning("could not remove old log %s: %s", path, e)
    return removed


def setup_logging(cfg: Config, *, console: bool = True) -> RecentLogBuffer:
    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(logging.DEBUG if cfg.DEBUG else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(stream)

    if cfg.LOG_TO_FILE_ENABLED:
        base = log_dir(cfg)
        os.makedirs(base, exist_ok=True)
        # the new run counts towards retention
        pruned = cleanup_old_logs(cfg, keep=int(cfg.LOG_RETENTION_COUNT) - 1)
        ts = dt.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        path = os.path.join(base, f"{cfg.LOG_RUN_FILE_PREFIX}_run_{ts}.log")
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)
        root.info("run log file: %s", path)
        if pruned:
            root.info("cleanup: removed %d old log files", pruned)

    recent = RecentLogBuffer(cfg.WEB_LOG_LINES)
    root.addHandler(recent)
    root.propagate = False

    logging.getLogger("obsws_python").setLevel(logging.WARNING)
    return recent

