"""
canonical_json.py - deterministic JSON for signed TUF metadata.

Root and targets signatures are computed over these bytes, and the same
documents are also signed by the factory's online key and by other tooling
built on docker's canonical JSON encoder (``github.com/docker/go/canonical/json``,
a fork of Go's ``encoding/json``). The output therefore follows that encoder:

- UTF-8, object keys sorted by codepoint, no insignificant whitespace
- ``<``, ``>`` and ``&`` escaped as ``\\u003c``, ``\\u003e``, ``\\u0026``
- U+2028 and U+2029 escaped as ``\\u2028`` and ``\\u2029``
- backspace and form feed escaped as ``\\u0008`` and ``\\u000c``
  (Python's ``json`` writes ``\\b`` and ``\\f``)
- other non-ASCII text left as raw UTF-8
- no NaN/Infinity (raises ValueError)

Floats are not covered: Go and Python format them differently, and TUF
metadata carries integers only.
"""

from __future__ import annotations
import hashlib
import json
import re
from typing import Any

# Every backslash in json.dumps output starts an escape sequence, so matching
# ``\\.`` left to right never splits an escaped backslash.
_ESCAPE_RE = re.compile(r"\\(.)")
_GO_SHORT_ESCAPES = {"b": "\\u0008", "f": "\\u000c"}
_GO_CHAR_ESCAPES = str.maketrans({
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
})


def _go_escape(match: re.Match) -> str:
    return _GO_SHORT_ESCAPES.get(match.group(1), match.group(0))


def canonical_dumps(obj: Any) -> str:
    """Return canonical JSON string with sorted keys and no whitespace."""
    text = json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    # Outside of strings the encoder emits none of these characters.
    return _ESCAPE_RE.sub(_go_escape, text).translate(_GO_CHAR_ESCAPES)


def canonical_bytes(obj: Any) -> bytes:
    return canonical_dumps(obj).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return lowercase hex SHA-256 digest."""
    return hashlib.sha256(data).hexdigest()


def canonical_hash(obj: Any) -> str:
    """SHA-256 of the canonical bytes; key ids are this over the public key record."""
    return sha256_hex(canonical_bytes(obj))
