"""
Export/Import — JSONL Backup and Legacy Migration

Export writes the current state, one {"key": ..., "val": {...}} object per
line (JSONL), latest snapshot per key.

Import reads the same shape. It also accepts the append-only JSON-lines
databases chat bots commonly keep replies in ("dirty" format): every write is a
line, later lines for a key supersede earlier ones, and a line without
"val" removes the key. A truncated last line (crash mid-write) is
discarded; everything before it is kept.

Imported snapshots are appended to the log as-is (editor, time and frozen
preserved); they do not pass the frozen gate. Content replies still pass
through the pre-commit hook when one is given.

stdout purity: export writes only JSONL to stdout. Progress goes to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, IO, Optional

from replystore.log import ReplyLog
from replystore.types import Outcome, Reply, normalize_key

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class ImportResult:
    """Counts from an import operation."""

    total_lines: int = 0
    keys_seen: int = 0
    imported: int = 0
    skipped_existing: int = 0
    skipped_invalid_key: int = 0
    skipped_policy: int = 0
    errors: int = 0
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_lines": self.total_lines,
            "keys_seen": self.keys_seen,
            "imported": self.imported,
            "skipped_existing": self.skipped_existing,
            "skipped_invalid_key": self.skipped_invalid_key,
            "skipped_policy": self.skipped_policy,
            "errors": self.errors,
            "truncated": self.truncated,
        }


def _default_log(msg: str) -> None:
    """Log to stderr."""
    print(msg, file=sys.stderr)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def export_replies(
    db_path: str,
    *,
    include_tombstones: bool = False,
    output: IO[str] = sys.stdout,
    log: Callable[[str], None] = _default_log,
) -> int:
    """Export the current replies as JSONL.

    Args:
        db_path: Path to the SQLite database.
        include_tombstones: Also export content-less (deleted/frozen) keys.
        output: Writable stream for JSONL output (default: stdout).
        log: Callable for progress messages (default: stderr).

    Returns:
        Number of keys exported.

    Raises:
        FileNotFoundError: If db_path does not exist.
    """
    if db_path != ":memory:" and not Path(db_path).is_file():
        raise FileNotFoundError(f"No reply database at {db_path}")
    reply_log = ReplyLog(db_path)
    try:
        state = reply_log.replay()
    finally:
        reply_log.close()

    count = 0
    for key in sorted(state):
        reply = state[key]
        if not reply.has_content and not include_tombstones:
            continue
        output.write(json.dumps({"key": key, "val": reply.to_dict()}, ensure_ascii=False) + "\n")
        count += 1

    log(f"[export] {count} reply(s) exported")
    return count


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def read_jsonl_log(fh: IO[str], result: ImportResult) -> Dict[str, Optional[Dict[str, Any]]]:
    """Fold an append-only JSON-lines log into key -> latest value.

    A value of None means the key was removed.
    """
    state: Dict[str, Optional[Dict[str, Any]]] = {}
    lines = fh.read().split("\n")
    # A complete file ends with "\n", leaving an empty last element.
    unterminated = lines[-1] if lines and lines[-1].strip() else None
    body = lines[:-1]

    for line in body:
        if not line.strip():
            continue
        result.total_lines += 1
        _fold_line(line, state, result)

    if unterminated is not None:
        result.total_lines += 1
        try:
            json.loads(unterminated)
        except json.JSONDecodeError:
            logger.warning("Discarding truncated trailing line")
            result.truncated = True
        else:
            _fold_line(unterminated, state, result)

    return state


def _fold_line(line: str, state: Dict[str, Optional[Dict[str, Any]]], result: ImportResult) -> None:
    try:
        row = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning(f"Malformed JSON on line {result.total_lines}: {e}")
        result.errors += 1
        return
    if not isinstance(row, dict) or not isinstance(row.get("key"), str):
        logger.warning(f"Line {result.total_lines} has no string 'key'")
        result.errors += 1
        return
    val = row.get("val")
    if val is not None and not isinstance(val, dict):
        logger.warning(f"Line {result.total_lines} has a non-object 'val'")
        result.errors += 1
        return
    state[row["key"]] = val


def import_replies(
    db_path: str,
    source: IO[str] | str,
    *,
    overwrite: bool = False,
    dry_run: bool = False,
    before_update: Optional[Callable[[Reply], Outcome[Reply]]] = None,
    log: Callable[[str], None] = _default_log,
) -> ImportResult:
    """Import replies from JSONL (export format or legacy append-only log).

    Args:
        db_path: Path to the SQLite database.
        source: File path (str) or readable IO stream.
        overwrite: Replace keys that already exist in the store.
        dry_run: Count without writing.
        before_update: Optional synchronous pre-commit hook for content replies.
        log: Callable for progress messages (default: stderr).

    Returns:
        ImportResult with counts.
    """
    result = ImportResult()

    if isinstance(source, str):
        with open(source, "r", encoding="utf-8") as fh:
            state = read_jsonl_log(fh, result)
    else:
        state = read_jsonl_log(source, result)

    reply_log = ReplyLog(db_path)
    try:
        existing = reply_log.replay()
        for raw_key, val in state.items():
            if val is None:
                continue
            result.keys_seen += 1
            key = normalize_key(raw_key)
            if "@" in key:
                result.skipped_invalid_key += 1
                continue
            if key in existing and existing[key].has_content and not overwrite:
                result.skipped_existing += 1
                continue
            try:
                reply = Reply.from_dict(val)
            except (TypeError, ValueError) as e:
                logger.warning(f"Invalid reply for {raw_key!r}: {e}")
                result.errors += 1
                continue

            if before_update is not None and reply.has_content:
                verdict = before_update(reply)
                if verdict.failed:
                    result.skipped_policy += 1
                    continue
                reply = verdict.value or reply

            if not dry_run:
                reply_log.append(key, reply)
                existing[key] = reply
            result.imported += 1
    finally:
        reply_log.close()

    label = " (dry run)" if dry_run else ""
    log(
        f"[import]{label} {result.imported} imported, "
        f"{result.skipped_existing} existing, "
        f"{result.skipped_invalid_key} invalid key, "
        f"{result.skipped_policy} policy, "
        f"{result.errors} error(s)"
        + (", truncated tail discarded" if result.truncated else "")
    )
    return result
