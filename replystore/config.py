"""
Reply Store Configuration

Configuration dataclasses for replystore: store location, alias depth,
pre-commit policy, and admin identities. Includes load_config() for
reading a JSON config file with silent fallback to compiled defaults.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and (not isinstance(value, typ) or isinstance(value, bool)):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StoreConfig:
    """SQLite log configuration."""
    db_path: str = ".replies/replies.db"
    wal_mode: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        if not self.db_path:
            return ["store.db_path: must not be empty"]
        return []


@dataclass
class AliasConfig:
    """Alias resolution configuration."""
    max_alias_depth: int = 3

    def validate(self) -> List[str]:
        errors: List[str] = []
        _check_range(errors, "alias.max_alias_depth",
                      self.max_alias_depth, 1, 1000, int)
        return errors


@dataclass
class PolicyConfig:
    """Pre-commit policy configuration."""
    daemon: str = "irc"
    command_prefixes: List[str] = field(default_factory=lambda: ["!", "/"])

    def validate(self) -> List[str]:
        errors: List[str] = []
        if any(not p for p in self.command_prefixes):
            errors.append("policy.command_prefixes: empty prefix")
        return errors


@dataclass
class AuthConfig:
    """Admin identities allowed to edit frozen replies."""
    admins: List[str] = field(default_factory=list)

    def validate(self) -> List[str]:
        return []


@dataclass
class ReplyConfig:
    """Top-level replystore configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    alias: AliasConfig = field(default_factory=AliasConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ReplyConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "alias" in d:
            kwargs["alias"] = AliasConfig(**d["alias"])
        if "policy" in d:
            kwargs["policy"] = PolicyConfig(**d["policy"])
        if "auth" in d:
            kwargs["auth"] = AuthConfig(**d["auth"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.alias.validate())
        errors.extend(self.policy.validate())
        errors.extend(self.auth.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> ReplyConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        ReplyConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = ReplyConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = ReplyConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError, AttributeError):
            cfg = ReplyConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
