"""
replystore — Persistent chat-bot replies with aliases, locks and in-place edits.

One append-only SQLite log, replayed into memory at open. Reads follow
alias chains up to a bounded depth; writes pass a frozen-record gate and a
pluggable pre-commit policy.
"""

__version__ = "0.1.0"

from replystore.types import Reply, Outcome, OutcomeError, normalize_key
from replystore.alias import AliasResolver
from replystore.edit import Substitution, SubstitutionSyntaxError
from replystore.log import ReplyLog, LogError, LogCorruptError, SCHEMA_VERSION
from replystore.policy import CommandGuardPolicy, HostmaskAdmins, accept_all, deny_all
from replystore.store import ReplyStore
from replystore.config import ReplyConfig, load_config

__all__ = [
    "__version__",
    "Reply",
    "Outcome",
    "OutcomeError",
    "normalize_key",
    "AliasResolver",
    "Substitution",
    "SubstitutionSyntaxError",
    "ReplyLog",
    "LogError",
    "LogCorruptError",
    "SCHEMA_VERSION",
    "CommandGuardPolicy",
    "HostmaskAdmins",
    "accept_all",
    "deny_all",
    "ReplyStore",
    "ReplyConfig",
    "load_config",
]
