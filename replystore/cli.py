"""
replystore CLI — Operator Commands for a Reply Database

Commands:
    replystore init    [PATH]                 — scaffold database + config.json
    replystore get     KEY [--to NICK]        — resolve a reply (follows aliases)
    replystore show    KEY [--trace]          — raw record, alias chain, history
    replystore list                           — keys holding content
    replystore learn   KEY MESSAGE [--act|--is]
    replystore alias   KEY TARGET
    replystore edit    KEY 's/find/replace/gi'
    replystore append  KEY TEXT
    replystore forget  KEY
    replystore lock    KEY / unlock KEY       — operator-level, unconditional
    replystore stats                          — store metrics
    replystore compact                        — rewrite log to one entry per key
    replystore export  [--tombstones]         — JSONL → stdout
    replystore import  FILE [--overwrite]     — JSONL or legacy log → store

Environment variables:
    REPLYSTORE_DB       Path to SQLite database (default: config or .replies/replies.db)
    REPLYSTORE_CONFIG   Path to config.json
    REPLYSTORE_EDITOR   Editor identity recorded on writes (default: user!user@host)

Precedence (invariant):
    CLI --flag  >  REPLYSTORE_* env var  >  config.json  >  compiled default

Exit codes:
    0  Success
    1  Operational failure (bad args, frozen, missing reply, policy rejection)
    2  Internal failure (unexpected exception, I/O error)
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import socket
import sys
from pathlib import Path
from typing import Optional

from replystore.config import ReplyConfig, load_config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Failure messages
# ---------------------------------------------------------------------------

_EDIT_FAILURES = {
    "dne": "Cannot edit '{key}'. Reply does not exist.",
    "frozen": "Cannot edit '{key}'. Reply is locked.",
    "unchanged": "Replacement on '{key}' had no effect.",
    "no-message-left": "Cannot edit '{key}'. Would leave reply empty. Use forget instead.",
    "at-symbol-in-key": "Cannot learn '{key}'. Keys may not contain '@'.",
    "bad-replace-format": "Invalid replacement format. Expected s/find/replace/flags.",
    "bad-replace-regexp": "Invalid replacement format. RegExp invalid.",
    "maybe-twitch-command": "Disallowed! Reply message could be a Twitch command.",
}

_FORGET_FAILURES = {
    "dne": "Cannot forget reply '{key}'. Reply does not exist.",
    "frozen": "Cannot forget reply '{key}'. Reply is locked.",
}

_GET_FAILURES = {
    "no-reply": "No such reply '{key}' found.",
    "max-alias-depth-reached": "Error: Max alias depth reached.",
}


def _reply_key(raw: str) -> str:
    """Trim a key and collapse internal whitespace runs to single spaces."""
    return " ".join(raw.split())


def _failure_message(table: dict, reason: str, key: str) -> str:
    template = table.get(reason, "Error: Unhandled failure reason ('{reason}').")
    return template.format(key=key, reason=reason)


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


def _resolve_config(args: Optional[argparse.Namespace] = None) -> ReplyConfig:
    """Resolve config: CLI --config > REPLYSTORE_CONFIG > defaults."""
    path = getattr(args, "config", None) if args else None
    path = path or os.environ.get("REPLYSTORE_CONFIG") or None
    return load_config(path)


def _resolve_db(args: Optional[argparse.Namespace], config: ReplyConfig) -> str:
    """Resolve database path: CLI --db > REPLYSTORE_DB > config.store.db_path."""
    if args and getattr(args, "db", None):
        return args.db
    return _env_str("REPLYSTORE_DB", config.store.db_path)


def _resolve_editor(args: Optional[argparse.Namespace] = None) -> str:
    """Resolve editor identity: CLI --editor > REPLYSTORE_EDITOR > user!user@host."""
    if args and getattr(args, "editor", None):
        return args.editor
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "cli"
    return _env_str("REPLYSTORE_EDITOR", f"{user}!{user}@{socket.gethostname()}")


def _open_store(args: argparse.Namespace):
    """Open a ReplyStore wired from config. Creates the DB if needed."""
    from replystore.store import ReplyStore
    config = _resolve_config(args)
    return ReplyStore.from_config(config, db_path=_resolve_db(args, config))


# ---------------------------------------------------------------------------
# Stdout/stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _fail(msg: str) -> None:
    _warn(msg)
    sys.exit(1)


_DEFAULT_CONFIG = {
    "store": {"db_path": "", "wal_mode": True},
    "alias": {"max_alias_depth": 3},
    "policy": {"daemon": "irc", "command_prefixes": ["!", "/"]},
    "auth": {"admins": []},
}


# ===========================================================================
# Command: init
# ===========================================================================


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize a reply database directory."""
    from replystore.store import ReplyStore

    target = Path(args.path).resolve()
    db_path = Path(getattr(args, "db", None) or target / "replies.db")
    target.mkdir(parents=True, exist_ok=True)

    store = ReplyStore(str(db_path))
    store.close()

    config_path = target / "config.json"
    if not config_path.exists():
        cfg = json.loads(json.dumps(_DEFAULT_CONFIG))
        cfg["store"]["db_path"] = str(db_path)
        config_path.write_text(json.dumps(cfg, indent=2) + "\n", encoding="utf-8")

    gitignore_path = target / ".gitignore"
    if not gitignore_path.exists():
        gitignore_path.write_text("*.db\n*.db-wal\n*.db-shm\n", encoding="utf-8")

    _info(f"Reply database initialized: {target}")
    _info(f"  Database: {db_path}")
    _info(f"  Config:   {config_path}")
    print(f'export REPLYSTORE_DB="{db_path}"')
    print(f'export REPLYSTORE_CONFIG="{config_path}"')


# ===========================================================================
# Reads: get, show, list, stats
# ===========================================================================


def cmd_get(args: argparse.Namespace) -> None:
    """Resolve a reply through aliases and print it."""
    key = _reply_key(args.key)
    with _open_store(args) as store:
        outcome = store.get(key)
    if outcome.failed:
        _fail(_failure_message(_GET_FAILURES, outcome.reason, key))

    content = dict(outcome.value)
    nick = (args.to or "").strip()
    if nick and content["intent"] == "say":
        content["message"] = f"{nick}: {content['message']}"
    if getattr(args, "json", False):
        print(json.dumps(content, ensure_ascii=False))
    elif content["intent"] == "act":
        print(f"/me {content['message']}")
    else:
        print(content["message"])


def cmd_show(args: argparse.Namespace) -> None:
    """Show the raw record for a key, with optional alias trace and history."""
    key = _reply_key(args.key)
    with _open_store(args) as store:
        reply = store.lookup(key)
        if reply is None:
            _fail(f"No record for '{key}'.")
        trace = store.trace(key) if args.trace else None
        history = store.history(key) if args.history else None

    if getattr(args, "json", False):
        data = {"key": key.lower(), "record": reply.to_dict()}
        if trace is not None:
            data["trace"] = trace[1]
            data["resolved"] = trace[0].value
            data["reason"] = trace[0].reason
        if history is not None:
            data["history"] = [r.to_dict() for r in history]
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return

    print(f"Key:     {key.lower()}")
    print(f"Intent:  {reply.intent or '(deleted)'}")
    print(f"Frozen:  {reply.frozen}")
    print(f"Editor:  {reply.editor or '-'}")
    print(f"Time:    {reply.time or '-'}")
    if reply.has_content:
        print(f"\n--- Message ---\n{reply.message}")
    if trace is not None:
        outcome, chain = trace
        result = outcome.reason or outcome.value["intent"]
        print(f"\nAlias chain: {' -> '.join(chain)} [{result}]")
    if history is not None:
        print(f"\n--- History ({len(history)}) ---")
        for r in history:
            label = f"[{r.intent}] {r.message}" if r.has_content else "(no content)"
            lock = " frozen" if r.frozen else ""
            print(f"  {r.time or '-'} {r.editor or '-'}{lock}: {label}")


def cmd_list(args: argparse.Namespace) -> None:
    """List keys holding content."""
    with _open_store(args) as store:
        keys = store.keys()
    if getattr(args, "json", False):
        print(json.dumps(keys, ensure_ascii=False))
    else:
        for key in keys:
            print(key)


def cmd_stats(args: argparse.Namespace) -> None:
    """Show reply store statistics."""
    with _open_store(args) as store:
        stats = store.stats()

    if getattr(args, "json", False):
        stats["status"] = "ok"
        print(json.dumps(stats, indent=2, ensure_ascii=False))
    else:
        print("Reply Store Statistics")
        print("=" * 40)
        print(f"  Keys:        {stats['keys']}")
        print(f"  Replies:     {stats['replies']}")
        print(f"  Tombstones:  {stats['tombstones']}")
        print(f"  Frozen:      {stats['frozen']}")
        print(f"  By intent:")
        for intent, count in sorted(stats["by_intent"].items()):
            print(f"    {intent:6s}: {count}")
        print(f"  Log entries: {stats['log_entries']}")


# ===========================================================================
# Writes: learn, alias, edit, append, forget
# ===========================================================================


def _learn(args: argparse.Namespace, key: str, intent: str, message: str, done: str) -> None:
    with _open_store(args) as store:
        outcome = asyncio.run(store.set(
            key, intent=intent, message=message, editor=_resolve_editor(args),
        ))
    if outcome.failed:
        _fail(_failure_message(_EDIT_FAILURES, outcome.reason, key))
    logger.info(f"Reply: {key!r} => [{intent}] {outcome.value.message}")
    print(done)


def cmd_learn(args: argparse.Namespace) -> None:
    """Teach a say (default), act (--act) or 'KEY is ...' (--is) reply."""
    key = _reply_key(args.key)
    message = " ".join(args.message).strip()
    if not key:
        _fail("Invalid format. No key specified.")
    if not message:
        _fail("Invalid format. No description specified.")
    intent = "act" if args.act else "say"
    if args.is_:
        message = f"{key} is {message}"
    _learn(args, key, intent, message, f"Learned reply '{key}'.")


def cmd_alias(args: argparse.Namespace) -> None:
    """Make KEY an alias of TARGET."""
    key, target = _reply_key(args.key), _reply_key(args.target)
    if not key or not target:
        _fail("Invalid format. Both a key and a target are needed.")
    _learn(args, key, "alias", target, f"Learned alias '{key}' => '{target}'.")


def _replace(args: argparse.Namespace, key: str, substitution) -> None:
    with _open_store(args) as store:
        outcome = asyncio.run(store.replace(key, substitution, _resolve_editor(args)))
    if outcome.failed:
        _fail(_failure_message(_EDIT_FAILURES, outcome.reason, key))
    logger.info(f"Reply: {key!r} => [{outcome.value.intent}] {outcome.value.message}")
    print(f"Successfully did replacement on '{key}'.")


def cmd_edit(args: argparse.Namespace) -> None:
    """Apply an s/find/replace/flags edit to a reply."""
    from replystore.edit import Substitution, SubstitutionSyntaxError

    try:
        substitution = Substitution.parse(args.expression)
    except SubstitutionSyntaxError as e:
        _fail(_failure_message(_EDIT_FAILURES, e.reason, args.key))
    _replace(args, _reply_key(args.key), substitution)


def cmd_append(args: argparse.Namespace) -> None:
    """Append text (after a space) to a reply."""
    from replystore.edit import Substitution

    text = " ".join(args.text).strip()
    if not text:
        _fail("Invalid format. No description specified.")
    _replace(args, _reply_key(args.key), Substitution.append(text))


def cmd_forget(args: argparse.Namespace) -> None:
    """Delete a reply (its lock survives)."""
    key = _reply_key(args.key)
    with _open_store(args) as store:
        outcome = asyncio.run(store.delete(key, _resolve_editor(args)))
    if outcome.failed:
        _fail(_failure_message(_FORGET_FAILURES, outcome.reason, key))
    logger.info(f"Reply forgotten: {key!r}")
    print(f"Forgotten reply '{key}'.")


# ===========================================================================
# Operator commands: lock, unlock, compact, export, import
# ===========================================================================


def cmd_lock(args: argparse.Namespace) -> None:
    """Freeze a reply so only admins can edit it."""
    key = _reply_key(args.key).lower()
    with _open_store(args) as store:
        store.freeze(key)
    print(f"Locked reply '{key}'.")


def cmd_unlock(args: argparse.Namespace) -> None:
    """Unfreeze a reply."""
    key = _reply_key(args.key).lower()
    with _open_store(args) as store:
        changed = store.unfreeze(key)
    if not changed:
        _fail(f"Cannot unlock '{key}'. Reply does not exist.")
    print(f"Unlocked reply '{key}'.")


def cmd_compact(args: argparse.Namespace) -> None:
    """Rewrite the log down to the latest snapshot per key."""
    with _open_store(args) as store:
        result = store.compact()
    if getattr(args, "json", False):
        result["status"] = "ok"
        print(json.dumps(result, indent=2))
    else:
        print(
            f"Compacted log: {result['entries_before']} -> "
            f"{result['entries_after']} entries"
        )


def cmd_export(args: argparse.Namespace) -> None:
    """Export replies as JSONL to stdout."""
    from replystore.export_import import export_replies

    config = _resolve_config(args)
    try:
        export_replies(
            _resolve_db(args, config),
            include_tombstones=args.tombstones,
            log=_info,
        )
    except FileNotFoundError as e:
        _fail(f"Error: {e}")


def cmd_import(args: argparse.Namespace) -> None:
    """Import replies from a JSONL file (or '-' for stdin)."""
    from replystore.export_import import import_replies
    from replystore.policy import policy_for

    config = _resolve_config(args)
    source = sys.stdin if args.file == "-" else args.file
    try:
        result = import_replies(
            _resolve_db(args, config),
            source,
            overwrite=args.overwrite,
            dry_run=args.dry_run,
            before_update=policy_for(config.policy),
            log=_info,
        )
    except FileNotFoundError as e:
        _fail(f"Error: {e}")
    if getattr(args, "json", False):
        out = result.to_dict()
        out["status"] = "ok"
        print(json.dumps(out, indent=2))


# ===========================================================================
# Entry point
# ===========================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (all subcommands)."""
    # SUPPRESS defaults prevent subparser defaults from overriding
    # values parsed at the main-parser level (argparse parents quirk).
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--db", default=argparse.SUPPRESS,
        help="Path to SQLite database (default: REPLYSTORE_DB or config)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="Path to config.json (default: REPLYSTORE_CONFIG)",
    )
    _common.add_argument(
        "--editor", default=argparse.SUPPRESS,
        help="Editor identity for writes (default: REPLYSTORE_EDITOR or user!user@host)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="replystore",
        description="replystore — persistent chat-bot replies with aliases and locks",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("init", parents=[_common], help="Initialize a reply database")
    p.add_argument("path", nargs="?", default=".replies",
                   help="Directory (default: .replies)")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("get", parents=[_common], help="Resolve and print a reply")
    p.add_argument("key")
    p.add_argument("--to", metavar="NICK",
                   help="Address a say reply to NICK (\"NICK: message\")")
    p.set_defaults(func=cmd_get)

    p = sub.add_parser("show", parents=[_common], help="Show a raw record")
    p.add_argument("key")
    p.add_argument("--trace", action="store_true", help="Show the alias chain")
    p.add_argument("--history", action="store_true", help="Show every logged snapshot")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("list", parents=[_common], help="List keys holding content")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("learn", parents=[_common], help="Teach a reply")
    p.add_argument("key")
    p.add_argument("message", nargs="+")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--act", action="store_true", help="Act the message instead of saying it")
    mode.add_argument("--is", dest="is_", action="store_true",
                      help="Prefix the message with '<key> is '")
    p.set_defaults(func=cmd_learn)

    p = sub.add_parser("alias", parents=[_common], help="Make KEY an alias of TARGET")
    p.add_argument("key")
    p.add_argument("target")
    p.set_defaults(func=cmd_alias)

    p = sub.add_parser("edit", parents=[_common], help="Edit a reply with s/find/replace/flags")
    p.add_argument("key")
    p.add_argument("expression")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("append", parents=[_common], help="Append text to a reply")
    p.add_argument("key")
    p.add_argument("text", nargs="+")
    p.set_defaults(func=cmd_append)

    p = sub.add_parser("forget", parents=[_common], help="Delete a reply")
    p.add_argument("key")
    p.set_defaults(func=cmd_forget)

    p = sub.add_parser("lock", parents=[_common], help="Freeze a reply (admin edits only)")
    p.add_argument("key")
    p.set_defaults(func=cmd_lock)

    p = sub.add_parser("unlock", parents=[_common], help="Unfreeze a reply")
    p.add_argument("key")
    p.set_defaults(func=cmd_unlock)

    p = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("compact", parents=[_common], help="Compact the log")
    p.set_defaults(func=cmd_compact)

    p = sub.add_parser("export", parents=[_common], help="Export replies as JSONL")
    p.add_argument("--tombstones", action="store_true",
                   help="Include deleted/frozen-only keys")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", parents=[_common], help="Import replies from JSONL")
    p.add_argument("file", help="JSONL file, or '-' for stdin")
    p.add_argument("--overwrite", action="store_true", help="Replace existing keys")
    p.add_argument("--dry-run", action="store_true", help="Count without writing")
    p.set_defaults(func=cmd_import)

    return parser


def main() -> None:
    """CLI entry point: replystore <command> [args]."""
    global _quiet

    parser = build_parser()
    args = parser.parse_args()

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. replystore export | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
