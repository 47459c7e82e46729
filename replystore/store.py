"""
Reply Store — Durable Replies with Frozen-Record Permissions

The in-memory key -> Reply map is rebuilt from the append-only ReplyLog at
open time; every mutation appends a full snapshot before the map entry is
replaced. Reads are unrestricted and synchronous. Writes are coroutines,
because both injected capabilities may suspend:

    set / delete / replace
        frozen gate  ->  is_editor_admin(editor)      (only if frozen)
        build candidate
        before_update(candidate)                      (set / replace only)
        commit if the record is still the one the gate saw

Mutations of one key are serialized through a per-key asyncio.Lock.
freeze/unfreeze are synchronous and may land while a write is suspended;
the write then re-runs its gate against the fresh record instead of
committing against a stale frozen flag.

Expected failures are Outcome reasons; contract violations raise
ValueError/TypeError; log failures raise LogError.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import weakref
from typing import Any, Callable, Dict, List, Optional

from replystore.alias import DEFAULT_MAX_ALIAS_DEPTH, AliasResolver
from replystore.config import ReplyConfig
from replystore.edit import Substitution
from replystore.log import LogError, ReplyLog
from replystore.policy import HostmaskAdmins, accept_all, deny_all, policy_for
from replystore.types import (
    AT_SYMBOL_IN_KEY,
    DOES_NOT_EXIST,
    FROZEN,
    NO_MESSAGE_LEFT,
    UNCHANGED,
    VALID_INTENTS,
    Outcome,
    Reply,
    _now_iso,
    normalize_key,
)

logger = logging.getLogger(__name__)

Builder = Callable[[Optional[Reply]], Outcome[Reply]]


async def _settle(value: Any) -> Any:
    """Await value if the injected capability returned an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


class ReplyStore:
    """
    Persistent reply store.

    Not sharded: one store instance is one logical actor, used from a
    single event loop.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        is_editor_admin: Callable[[str], Any] = deny_all,
        before_update: Callable[[Reply], Any] = accept_all,
        max_alias_depth: int = DEFAULT_MAX_ALIAS_DEPTH,
        wal_mode: bool = True,
    ):
        """Open the store and replay its log.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            is_editor_admin: Predicate (sync or async) deciding whether an
                editor may modify a frozen reply.
            before_update: Pre-commit hook (sync or async) returning an
                Outcome[Reply] for each set/replace candidate.
            max_alias_depth: Maximum number of alias hops followed by get().
            wal_mode: Enable WAL journal mode for disk-backed databases.

        Raises:
            TypeError: If a capability is not callable.
            ValueError: If max_alias_depth is not a finite positive integer.
            LogError: If the log cannot be opened or replayed.
        """
        if not callable(is_editor_admin):
            raise TypeError("is_editor_admin must be callable")
        if not callable(before_update):
            raise TypeError("before_update must be callable")
        self._resolver = AliasResolver(self.lookup, max_alias_depth)
        self._is_editor_admin = is_editor_admin
        self._before_update = before_update
        self._log = ReplyLog(db_path, wal_mode=wal_mode)
        try:
            self._replies: Dict[str, Reply] = self._log.replay()
        except LogError:
            self._log.close()
            raise
        self._key_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        logger.info(
            f"ReplyStore initialized: {db_path} "
            f"({len(self._replies)} keys, max_alias_depth={max_alias_depth})"
        )

    @classmethod
    def from_config(cls, config: ReplyConfig, **overrides: Any) -> ReplyStore:
        """Open a store wired with the hooks a config describes."""
        kwargs: Dict[str, Any] = {
            "is_editor_admin": (
                HostmaskAdmins(config.auth.admins) if config.auth.admins else deny_all
            ),
            "before_update": policy_for(config.policy),
            "max_alias_depth": config.alias.max_alias_depth,
            "wal_mode": config.store.wal_mode,
        }
        kwargs.update(overrides)
        db_path = kwargs.pop("db_path", config.store.db_path)
        return cls(db_path, **kwargs)

    def close(self) -> None:
        """Close the underlying log."""
        self._log.close()

    def __enter__(self) -> ReplyStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- Reads -------------------------------------------------------------

    def lookup(self, key: str) -> Optional[Reply]:
        """Raw record for key (tombstones included, aliases not followed)."""
        return self._replies.get(normalize_key(key))

    def get(self, key: str) -> Outcome[Dict[str, str]]:
        """Resolve key through aliases to {intent, message}."""
        return self._resolver.resolve(key)

    def trace(self, key: str):
        """Resolve key, also returning the chain of keys visited."""
        return self._resolver.resolve_chain(key)

    def keys(self) -> List[str]:
        """Sorted keys that currently hold content."""
        return sorted(k for k, r in self._replies.items() if r.has_content)

    def __len__(self) -> int:
        return sum(1 for r in self._replies.values() if r.has_content)

    def __contains__(self, key: str) -> bool:
        reply = self.lookup(key)
        return reply is not None and reply.has_content

    def history(self, key: str) -> List[Reply]:
        """All snapshots ever written for key, oldest first."""
        return self._log.history(normalize_key(key))

    def stats(self) -> Dict[str, Any]:
        """Counts over the current map and the log."""
        replies = list(self._replies.values())
        by_intent: Dict[str, int] = {}
        for r in replies:
            if r.has_content:
                by_intent[r.intent] = by_intent.get(r.intent, 0) + 1
        return {
            "keys": len(replies),
            "replies": sum(by_intent.values()),
            "tombstones": sum(1 for r in replies if not r.has_content),
            "frozen": sum(1 for r in replies if r.frozen),
            "by_intent": by_intent,
            "log_entries": self._log.count(),
        }

    # -- Writes ------------------------------------------------------------

    async def set(
        self, key: str, *, intent: str, message: str, editor: str,
    ) -> Outcome[Reply]:
        """Create or overwrite a reply.

        Raises:
            ValueError: If intent, message or editor is missing or empty, or
                intent is not one of say, act, alias.
        """
        key = normalize_key(key)
        if "@" in key:
            return Outcome.failure(AT_SYMBOL_IN_KEY)
        if not (intent and message and editor):
            raise ValueError(
                "An intent, message, and editor are all needed to set a new reply."
            )
        if intent not in VALID_INTENTS:
            raise ValueError(f"Invalid intent: {intent!r}")

        def build(previous: Optional[Reply]) -> Outcome[Reply]:
            return Outcome.success(Reply(
                intent=intent,
                message=message,
                editor=editor,
                time=_now_iso(),
                frozen=previous.frozen if previous else False,
            ))

        return await self._mutate(key, editor, build, validate=True)

    async def delete(self, key: str, editor: str) -> Outcome[None]:
        """Replace an existing reply with a tombstone keeping its frozen flag."""
        key = normalize_key(key)

        def build(previous: Optional[Reply]) -> Outcome[Reply]:
            if previous is None or not previous.has_content:
                return Outcome.failure(DOES_NOT_EXIST)
            return Outcome.success(
                Reply(editor=editor, time=_now_iso(), frozen=previous.frozen)
            )

        outcome = await self._mutate(key, editor, build, validate=False)
        return Outcome.failure(outcome.reason) if outcome.failed else Outcome.success()

    async def replace(
        self, key: str, substitution: Substitution, editor: str,
    ) -> Outcome[Reply]:
        """Apply substitution to the current message of key."""
        key = normalize_key(key)

        def build(previous: Optional[Reply]) -> Outcome[Reply]:
            if previous is None or not previous.has_content:
                return Outcome.failure(DOES_NOT_EXIST)
            new_message = substitution.apply(previous.message)
            if new_message == previous.message:
                return Outcome.failure(UNCHANGED)
            if new_message == "":
                return Outcome.failure(NO_MESSAGE_LEFT)
            return Outcome.success(Reply(
                intent=previous.intent,
                message=new_message,
                editor=editor,
                time=_now_iso(),
                frozen=previous.frozen,
            ))

        return await self._mutate(key, editor, build, validate=True)

    def freeze(self, key: str) -> Reply:
        """Mark key frozen. Unknown keys become frozen tombstones."""
        key = normalize_key(key)
        previous = self._replies.get(key)
        if previous is None:
            reply = Reply(frozen=True)
        else:
            reply = Reply(
                intent=previous.intent,
                message=previous.message,
                editor=previous.editor,
                time=previous.time,
                frozen=True,
            )
        self._commit(key, reply)
        logger.info(f"Reply frozen: {key!r}")
        return reply

    def unfreeze(self, key: str) -> bool:
        """Clear the frozen flag. Returns False (no write) for unknown keys."""
        key = normalize_key(key)
        previous = self._replies.get(key)
        if previous is None:
            return False
        self._commit(key, Reply(
            intent=previous.intent,
            message=previous.message,
            editor=previous.editor,
            time=previous.time,
            frozen=False,
        ))
        logger.info(f"Reply unfrozen: {key!r}")
        return True

    def compact(self) -> Dict[str, int]:
        """Rewrite the log to one snapshot per key."""
        before, after = self._log.compact()
        return {"entries_before": before, "entries_after": after}

    # -- Internals ---------------------------------------------------------

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def _mutate(
        self, key: str, editor: str, build: Builder, *, validate: bool,
    ) -> Outcome[Reply]:
        """Gate, build, optionally validate, and commit a write to key.

        After each suspension the record is re-read; if another write
        replaced it meanwhile, the gate and build run again on the
        fresh record.
        """
        lock = self._lock_for(key)
        async with lock:
            while True:
                previous = self._replies.get(key)

                if previous is not None and previous.frozen:
                    allowed = bool(await _settle(self._is_editor_admin(editor)))
                    if self._replies.get(key) is not previous:
                        logger.debug(f"{key!r} changed during authorization, re-checking")
                        continue
                    if not allowed:
                        return Outcome.failure(FROZEN)

                outcome = build(previous)
                if outcome.failed or not validate:
                    if outcome.ok:
                        self._commit(key, outcome.value)
                    return outcome

                verdict = await _settle(self._before_update(outcome.value))
                if not isinstance(verdict, Outcome):
                    raise TypeError(
                        f"before_update must return an Outcome, got {type(verdict).__name__}"
                    )
                if self._replies.get(key) is not previous:
                    logger.debug(f"{key!r} changed during validation, re-checking")
                    continue
                if verdict.failed:
                    return verdict

                reply = verdict.value if verdict.value is not None else outcome.value
                self._commit(key, reply)
                return Outcome.success(reply)

    def _commit(self, key: str, reply: Reply) -> None:
        """Append reply to the log, then publish it in the map."""
        self._log.append(key, reply)
        self._replies[key] = reply
