"""
In-Place Text Edits — Pattern Substitution

A Substitution bundles a regular expression, its flags, and a replacement
template. Flags:
    g  replace every match (default: first match only)
    i  match case-insensitively (default: case-sensitive)

Replacement templates use the `$` conventions of chat-bot edit commands:
    $&      the whole match
    $1-$99  a capture group (empty if it did not participate)
    $`      text before the match
    $'      text after the match
    $$      a literal dollar sign
Anything else is copied literally; backslashes have no special meaning.
"""

from __future__ import annotations

import re
from typing import Union

# s/find/replace/flags, where "/" inside find or replace is escaped as "\/".
_SED_EXPRESSION = re.compile(r"^s/((?:[^/]|\\/)*)/((?:[^/]|\\/)*)/([gi]*)$")

_TEMPLATE_TOKEN = re.compile(r"\$(\$|&|`|'|\d{1,2})")

VALID_FLAGS = "gi"


class SubstitutionSyntaxError(ValueError):
    """Raised for a malformed edit expression or regular expression."""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason


class Substitution:
    """A compiled find/replace edit."""

    def __init__(
        self,
        pattern: Union[str, re.Pattern],
        replacement: str,
        flags: str = "",
    ):
        """
        Args:
            pattern: Regular expression source, or an already-compiled pattern.
            replacement: Replacement template (see module docstring).
            flags: Any combination of "g" and "i", each at most once.

        Raises:
            SubstitutionSyntaxError: Unknown/duplicate flags or invalid regex.
        """
        if any(f not in VALID_FLAGS for f in flags) or len(set(flags)) != len(flags):
            raise SubstitutionSyntaxError("bad-replace-regexp", f"invalid flags {flags!r}")
        self.flags = flags
        self.replacement = replacement
        if isinstance(pattern, str):
            try:
                self.regex = re.compile(pattern, re.IGNORECASE if "i" in flags else 0)
            except re.error as e:
                raise SubstitutionSyntaxError("bad-replace-regexp", str(e)) from e
        elif "i" in flags and not pattern.flags & re.IGNORECASE:
            self.regex = re.compile(pattern.pattern, pattern.flags | re.IGNORECASE)
        else:
            self.regex = pattern

    @property
    def is_global(self) -> bool:
        return "g" in self.flags

    def __repr__(self) -> str:
        return f"Substitution(s/{self.regex.pattern}/{self.replacement}/{self.flags})"

    @classmethod
    def parse(cls, expression: str) -> Substitution:
        """Build a Substitution from an ``s/find/replace/flags`` expression.

        Raises:
            SubstitutionSyntaxError: reason "bad-replace-format" when the
                expression does not have that shape, "bad-replace-regexp"
                when find is not a valid regular expression.
        """
        m = _SED_EXPRESSION.match(expression.strip())
        if m is None:
            raise SubstitutionSyntaxError("bad-replace-format", expression)
        find, replace, flags = m.groups()
        return cls(find, replace.replace("\\/", "/"), flags)

    @classmethod
    def append(cls, text: str) -> Substitution:
        """The amendment edit: append a space and text to the message."""
        return cls(re.compile(r"\Z"), " " + text.replace("$", "$$"))

    def apply(self, text: str) -> str:
        """Return text with the substitution applied."""
        return self.regex.sub(
            lambda m: _expand(self.replacement, m),
            text,
            count=0 if self.is_global else 1,
        )


def _expand(template: str, match: re.Match) -> str:
    """Expand $-tokens in template for one match."""
    ngroups = match.re.groups

    def token(m: re.Match) -> str:
        tok = m.group(1)
        if tok == "$":
            return "$"
        if tok == "&":
            return match.group(0)
        if tok == "`":
            return match.string[:match.start()]
        if tok == "'":
            return match.string[match.end():]
        # Two-digit group if it exists, else one digit plus a literal digit.
        if len(tok) == 2 and 1 <= int(tok) <= ngroups:
            return match.group(int(tok)) or ""
        if 1 <= int(tok[0]) <= ngroups:
            return (match.group(int(tok[0])) or "") + tok[1:]
        return m.group(0)

    return _TEMPLATE_TOKEN.sub(token, template)
