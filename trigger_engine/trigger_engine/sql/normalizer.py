"""Canonical forms for comparing registered DDL with catalog output.

PostgreSQL does not hand back the text it was given.  ``pg_get_functiondef``
rewrites the function header (schema-qualified name, one clause per line,
``$function$`` quoting) and ``pg_get_triggerdef`` wraps the ``WHEN``
expression in parentheses, lower-cases identifiers and adds casts to string
literals.  The canonical forms below strip those differences so that a
trigger installed from its registered DDL compares equal to itself.

**Function rules**:
1. The source is the text between the first pair of matching dollar quotes,
   with line endings normalised, trailing whitespace removed from every
   line and the whole trimmed.
2. The function name is taken from the header, without its schema;
   unquoted names are lower-cased.
3. The language is taken from the ``LANGUAGE`` clause, lower-cased.
4. DDL without dollar quoting is compared verbatim.

**Condition rules**:
1. Parse with SQLGlot (PostgreSQL dialect) and regenerate.
2. Lower-case unquoted identifiers.
3. Drop ``::text`` / ``::varchar`` casts on string literals.
4. Drop parentheses that do not change precedence.
5. Expressions SQLGlot cannot parse are compared with whitespace collapsed.
"""

from __future__ import annotations

import logging
import re

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

logger = logging.getLogger(__name__)

_DOLLAR_QUOTE_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_NAME_PART = r'(?:"[^"]+"|[\w$]+)'
_FUNCTION_NAME_RE = re.compile(rf"\bFUNCTION\s+({_NAME_PART}(?:\s*\.\s*{_NAME_PART})*)\s*\(", re.IGNORECASE)
_LANGUAGE_RE = re.compile(r"\bLANGUAGE\s+['\"]?(\w+)", re.IGNORECASE)
_NAME_SEPARATOR_RE = re.compile(r"\s*\.\s*")


def function_source(ddl: str) -> str | None:
    """Return the text between the first pair of matching dollar quotes in *ddl*."""
    opening = _DOLLAR_QUOTE_RE.search(ddl)
    if opening is None:
        return None
    end = ddl.find(opening.group(0), opening.end())
    if end == -1:
        return None
    return ddl[opening.end() : end]


def _unqualified(name: str) -> str:
    last = _NAME_SEPARATOR_RE.split(name)[-1]
    if last.startswith('"') and last.endswith('"'):
        return last[1:-1]
    return last.lower()


def canonical_function(ddl: str | None) -> str:
    """Canonical text of a ``CREATE FUNCTION`` statement (empty for ``None``)."""
    if ddl is None:
        return ""
    opening = _DOLLAR_QUOTE_RE.search(ddl)
    source = function_source(ddl)
    if opening is None or source is None:
        return ddl

    header = ddl[: opening.start()]
    trailer = ddl[opening.end() + len(source) + len(opening.group(0)) :]
    name_match = _FUNCTION_NAME_RE.search(header)
    language_match = _LANGUAGE_RE.search(header) or _LANGUAGE_RE.search(trailer)

    lines = source.replace("\r\n", "\n").split("\n")
    body = "\n".join(line.rstrip() for line in lines).strip()
    name = _unqualified(name_match.group(1)) if name_match else ""
    language = language_match.group(1).lower() if language_match else ""
    return f"FUNCTION {name}\nLANGUAGE {language}\n{body}"


def _redundant_parens(paren: exp.Paren) -> bool:
    inner, parent = paren.this, paren.parent
    if isinstance(inner, (exp.Paren, exp.Column, exp.Literal, exp.Boolean, exp.Null)):
        return True
    if isinstance(parent, exp.Or):
        return True
    if isinstance(parent, exp.And):
        return not isinstance(inner, exp.Or)
    if isinstance(parent, exp.Not):
        return isinstance(inner, exp.Predicate)
    return False


def canonical_condition(condition: str | None) -> str:
    """Canonical text of a ``WHEN`` expression (empty for ``None`` or blank)."""
    if condition is None or not condition.strip():
        return ""
    try:
        tree = sqlglot.parse_one(condition, read="postgres")
    except SqlglotError as exc:
        logger.debug("Condition not parseable, comparing verbatim: %s", exc)
        return " ".join(condition.split())

    for identifier in list(tree.find_all(exp.Identifier)):
        if not identifier.args.get("quoted"):
            identifier.set("this", identifier.name.lower())

    for cast in list(tree.find_all(exp.Cast)):
        if isinstance(cast.this, exp.Literal) and cast.this.is_string and cast.to.is_type("text", "varchar"):
            replaced = cast.replace(cast.this)
            if cast is tree:
                tree = replaced

    for paren in list(tree.find_all(exp.Paren)):
        if paren is tree or _redundant_parens(paren):
            replaced = paren.replace(paren.this)
            if paren is tree:
                tree = replaced

    return tree.sql(dialect="postgres")


def same_function(left: str | None, right: str | None) -> bool:
    return canonical_function(left) == canonical_function(right)


def same_condition(left: str | None, right: str | None) -> bool:
    return canonical_condition(left) == canonical_condition(right)
