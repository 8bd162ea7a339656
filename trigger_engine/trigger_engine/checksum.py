"""Checksum identity for registered triggers.

The checksum fingerprints the attributes that define a trigger: its name,
table, version, function body and ``WHEN`` condition.  Drift detection
recomputes it from the live catalog and compares against the stored value.

Algorithm ``sha256-lp-v1``: each field is rendered as text (``None`` becomes
the empty string), UTF-8 encoded and prefixed with its byte length and a
colon.  The prefixed fields are concatenated in a fixed order and hashed
with SHA-256; the hex digest is the checksum.  Length prefixes make field
boundaries unambiguous, so ``("ab", "c")`` and ``("a", "bc")`` differ.
"""

from __future__ import annotations

import hashlib

CHECKSUM_ALGORITHM = "sha256-lp-v1"


def _encode_field(value: object) -> bytes:
    raw = "" if value is None else str(value)
    data = raw.encode("utf-8")
    return str(len(data)).encode("ascii") + b":" + data


def compute_checksum(
    trigger_name: str,
    table_name: str,
    version: int | str,
    function_body: str | None,
    condition: str | None,
) -> str:
    """Return the hex SHA-256 checksum of a trigger's defining attributes.

    Parameters
    ----------
    trigger_name:
        Registered trigger name.
    table_name:
        Table the trigger is attached to.
    version:
        Definition version (rendered as its decimal text).
    function_body:
        Function DDL or definition text.  ``None`` hashes as empty.
    condition:
        ``WHEN`` clause expression without the surrounding parentheses.
        ``None`` hashes as empty.
    """
    digest = hashlib.sha256()
    for value in (trigger_name, table_name, version, function_body, condition):
        digest.update(_encode_field(value))
    return digest.hexdigest()
