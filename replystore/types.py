"""
Reply Data Model — Records and Outcomes

Defines the persisted Reply record, key normalization, and the Outcome
value returned by every store operation. Expected failures travel as
Outcome reasons, never as exceptions.

A reply without intent/message is a tombstone: it marks a deleted (or
never-created) key while keeping its frozen flag.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Literal, Optional, TypeVar

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Intent = Literal["say", "act", "alias"]

VALID_INTENTS: set = {"say", "act", "alias"}

# Failure reasons produced by the store itself. Pre-commit hooks may
# surface any other string.
NO_REPLY = "no-reply"
MAX_ALIAS_DEPTH_REACHED = "max-alias-depth-reached"
FROZEN = "frozen"
AT_SYMBOL_IN_KEY = "at-symbol-in-key"
DOES_NOT_EXIST = "dne"
UNCHANGED = "unchanged"
NO_MESSAGE_LEFT = "no-message-left"


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def normalize_key(key: str) -> str:
    """Case-fold a reply key. Applied before every store operation."""
    return key.lower()


# ---------------------------------------------------------------------------
# Reply
# ---------------------------------------------------------------------------

@dataclass
class Reply:
    """
    A persisted reply snapshot.

    Rules:
    - intent and message are both present, or both absent (tombstone).
    - For intent="alias", message holds the target key.
    - frozen survives content deletion.
    """

    intent: Optional[Intent] = None
    message: Optional[str] = None
    editor: Optional[str] = None
    time: Optional[str] = None
    frozen: bool = False

    def __post_init__(self):
        if self.intent is not None and (
            not isinstance(self.intent, str) or self.intent not in VALID_INTENTS
        ):
            raise ValueError(f"Invalid intent: {self.intent!r}")
        for name in ("message", "editor", "time"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{name} must be a string, got {type(value).__name__}")
        self.frozen = bool(self.frozen)

    @property
    def has_content(self) -> bool:
        """True unless this reply is a tombstone."""
        return bool(self.intent) and bool(self.message)

    @property
    def is_alias(self) -> bool:
        return self.has_content and self.intent == "alias"

    def content(self) -> Dict[str, str]:
        """The {intent, message} view returned by lookups."""
        return {"intent": self.intent, "message": self.message}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict, omitting absent fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Reply:
        """Deserialize from dict, ignoring unknown fields."""
        known = set(cls.__dataclass_fields__.keys())
        return cls(**{k: v for k, v in d.items() if k in known})

    def to_json(self) -> str:
        """Compact JSON snapshot (one log entry)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> Reply:
        return cls.from_dict(json.loads(text))


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

T = TypeVar("T")


class OutcomeError(RuntimeError):
    """Raised by Outcome.unwrap() on a failed outcome."""

    def __init__(self, reason: str):
        super().__init__(f"Operation failed: {reason}")
        self.reason = reason


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Success value or failure reason of a store operation."""

    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> Outcome[T]:
        if not reason:
            raise ValueError("A failure needs a reason")
        return cls(reason=reason)

    @property
    def ok(self) -> bool:
        """Return True if the operation succeeded."""
        return self.reason is None

    @property
    def failed(self) -> bool:
        """Return True if the operation failed."""
        return self.reason is not None

    def unwrap(self) -> T:
        """Return the value, or raise OutcomeError with the failure reason."""
        if self.failed:
            raise OutcomeError(self.reason)
        return self.value

    def unwrap_or(self, default: T) -> T:
        return default if self.failed else self.value
