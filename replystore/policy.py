"""
Write Governance — Pre-Commit Hooks and Editor Authorization

Two pluggable capabilities are injected into ReplyStore:

- before_update(reply) -> Outcome[Reply]   (sync or async)
  Runs once per successful set/replace, just before persistence. May
  reject with an opaque reason, or return a modified reply.

- is_editor_admin(editor) -> bool          (sync or async)
  Consulted only when the previous reply is frozen.

Never bypassed by the store for writes; freeze/unfreeze are unconditional
and callers authorize those themselves.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Iterable, List, Optional, Sequence

from replystore.config import PolicyConfig
from replystore.types import Outcome, Reply

logger = logging.getLogger(__name__)

MAYBE_TWITCH_COMMAND = "maybe-twitch-command"


# ---------------------------------------------------------------------------
# Pre-commit hooks
# ---------------------------------------------------------------------------

def accept_all(reply: Reply) -> Outcome[Reply]:
    """Default hook: every candidate reply is accepted unchanged."""
    return Outcome.success(reply)


class CommandGuardPolicy:
    """
    Rejects say-intent replies that could be read as a platform command.

    On chat platforms such as Twitch, a bot saying "/ban x" or "!cmd" may be
    executed by the platform or by other bots. act and alias replies are
    never spoken verbatim and pass through.
    """

    def __init__(self, prefixes: Sequence[str] = ("!", "/")):
        self._prefixes = tuple(prefixes)

    def __call__(self, reply: Reply) -> Outcome[Reply]:
        if reply.intent == "say" and reply.message and reply.message.startswith(self._prefixes):
            logger.info(f"Rejected say reply starting with a command prefix: {reply.message!r}")
            return Outcome.failure(MAYBE_TWITCH_COMMAND)
        return Outcome.success(reply)


def policy_for(config: Optional[PolicyConfig] = None):
    """Return the pre-commit hook for a deployment."""
    config = config or PolicyConfig()
    if config.daemon == "twitch":
        return CommandGuardPolicy(config.command_prefixes)
    return accept_all


# ---------------------------------------------------------------------------
# Authorization predicates
# ---------------------------------------------------------------------------

async def deny_all(editor: str) -> bool:
    """Default predicate when no admin list is configured."""
    return False


class HostmaskAdmins:
    """
    Async admin predicate over hostmask glob patterns.

    Editors are full identities ("nick!user@host"); patterns use shell
    globbing, compared case-insensitively (e.g. "*!*@staff.example.org").
    """

    def __init__(self, patterns: Iterable[str]):
        self._patterns: List[str] = [p.lower() for p in patterns if p]

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    async def __call__(self, editor: str) -> bool:
        identity = (editor or "").lower()
        allowed = any(fnmatch.fnmatchcase(identity, p) for p in self._patterns)
        logger.debug(f"Admin check for {editor!r}: {allowed}")
        return allowed
