"""
errors.py

Failure values for reconciliation.

Only an exhausted retry budget is reported; connection trouble is retried
quietly by the session manager and never shows up here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .intents import Intent

FAILURE_MESSAGES = {
    Intent.PREVIEW_SCENE: "failed to set the preview scene",
    Intent.PROGRAM_TRANSITION: "failed to change scene",
    Intent.VOLUME_SET: "failed to set the volumes",
}


class ReconcileError(Exception):
    """OBS never matched the requested state within the retry budget."""

    def __init__(self, intent: Intent, cause: str = "", attempts: int = 0):
        super().__init__(FAILURE_MESSAGES[intent])
        self.intent = intent
        self.cause = cause
        self.attempts = attempts

    def __str__(self) -> str:
        msg = FAILURE_MESSAGES[self.intent]
        if self.cause:
            msg += f" ({self.cause})"
        return msg


@dataclass
class ReconcileOutcome:
    intent: Intent
    value: Any
    ok: bool
    attempts: int = 0
    error: Optional[ReconcileError] = None
    finished_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if isinstance(value, tuple):
            value = [v.to_dict() for v in value]
        elif hasattr(value, "to_dict"):
            value = value.to_dict()
        return {
            "intent": self.intent.value,
            "value": value,
            "ok": self.ok,
            "attempts": self.attempts,
            "error": str(self.error) if self.error else None,
            "finished_at": self.finished_at,
        }
