"""Identifier quoting for DDL built from registry content.

Registry rows are operator-controlled, but trigger and table names still
flow into raw DDL strings.  Every identifier is double-quoted with embedded
quotes doubled, following PostgreSQL's quoted-identifier rules.
"""

from __future__ import annotations

import re

from trigger_engine.errors import ValidationError

# Unquoted identifiers PostgreSQL accepts without case folding surprises.
_SAFE_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_$]{0,62}$")


def is_simple_identifier(name: str) -> bool:
    """Return ``True`` if *name* is a plain identifier (letters, digits, ``_``, ``$``)."""
    return bool(_SAFE_IDENTIFIER_RE.match(name))


def quote_ident(name: str) -> str:
    """Quote a single identifier, doubling embedded double quotes.

    Raises
    ------
    ValidationError
        If *name* is empty or contains a NUL byte.
    """
    if not name or "\x00" in name:
        raise ValidationError(f"Invalid SQL identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def quote_qualified(name: str) -> str:
    """Quote a possibly schema-qualified name such as ``audit.orders``.

    Each dot-separated part is quoted on its own.  Names that are already
    quoted as a whole are split on dots outside the quotes.
    """
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(name):
        ch = name[i]
        if ch == '"':
            if in_quotes and i + 1 < len(name) and name[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == "." and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    if in_quotes:
        raise ValidationError(f"Unbalanced quotes in identifier: {name!r}")
    parts.append("".join(current))
    return ".".join(quote_ident(part) for part in parts)
