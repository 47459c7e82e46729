"""
Alias Resolution — Bounded-Depth Traversal

Follows alias replies to their terminal say/act reply. There is no cycle
detection: a cycle re-traverses until max_depth is reached and then fails
with max-alias-depth-reached.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from replystore.types import (
    MAX_ALIAS_DEPTH_REACHED,
    NO_REPLY,
    Outcome,
    Reply,
    normalize_key,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALIAS_DEPTH = 3

Lookup = Callable[[str], Optional[Reply]]


class AliasResolver:
    """Resolve a possibly-aliased key over a raw lookup function."""

    def __init__(self, lookup: Lookup, max_depth: int = DEFAULT_MAX_ALIAS_DEPTH):
        if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 1:
            raise ValueError(
                f"max_depth must be a finite positive integer, got {max_depth!r}"
            )
        self._lookup = lookup
        self._max_depth = max_depth

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def resolve(self, key: str) -> Outcome[Dict[str, str]]:
        """Return {intent, message} of the terminal reply for key."""
        outcome, _ = self.resolve_chain(key)
        return outcome

    def resolve_chain(self, key: str) -> Tuple[Outcome[Dict[str, str]], List[str]]:
        """Like resolve(), also returning the normalized keys visited in order."""
        visited: List[str] = []
        depth = 0
        current = key
        while True:
            if depth == self._max_depth:
                logger.debug(f"Alias depth {depth} reached resolving {key!r}")
                return Outcome.failure(MAX_ALIAS_DEPTH_REACHED), visited

            current = normalize_key(current)
            visited.append(current)
            reply = self._lookup(current)
            if reply is None or not reply.has_content:
                return Outcome.failure(NO_REPLY), visited

            if reply.intent != "alias":
                return Outcome.success(reply.content()), visited

            depth += 1
            current = reply.message
