"""Hashing and key generation helpers.

Dedupe keys are MD5 digests over a record's natural identity fields. They
only need to be stable across process restarts, not cryptographically strong.
Keys that name stored files or queue entries come from :mod:`secrets`.
"""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Container
from typing import Any

from agenthub._constants import UNKNOWN_EXTENSION

# Separates identity fields so ("ab", "c") and ("a", "bc") hash differently.
_FIELD_SEPARATOR = "\x1f"


def md5_hex(value: str) -> str:
    """Compute MD5 of a UTF-8 string, returning lowercase hex.

    Parameters
    ----------
    value : str
        The string to hash.

    Returns
    -------
    str
        32-character lowercase hex digest.
    """
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def dedupe_key(*fields: Any) -> str:
    """Return the stable dedupe key for a record's identity fields.

    ``None`` hashes like an empty string so a record missing an optional
    identity field still gets a deterministic key.
    """
    parts = ["" if value is None else str(value) for value in fields]
    return md5_hex(_FIELD_SEPARATOR.join(parts))


def generate_file_key() -> str:
    """Return a random key used to name a stored binary payload.

    128 random bits grouped as ``xxxxx-xxxx-xxxxx-xxxxxxxxxxxxxxxxxx``.
    """
    token = secrets.token_hex(16)
    return f"{token[:5]}-{token[5:9]}-{token[9:14]}-{token[14:]}"


def file_extension(filename: str | None) -> str:
    """Return the extension (with leading dot) of *filename*.

    Directory components are ignored. Names without a dot, or ending in one,
    map to ``.unknown``.
    """
    if not filename:
        return UNKNOWN_EXTENSION
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    dot = basename.rfind(".")
    if dot == -1 or dot == len(basename) - 1:
        return UNKNOWN_EXTENSION
    return basename[dot:]


def new_command_uid(existing: Container[str] = ()) -> str:
    """Return a random queue entry uid not present in *existing*."""
    while True:
        uid = secrets.token_hex(8)
        if uid not in existing:
            return uid
