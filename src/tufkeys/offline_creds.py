"""
offline_creds.py - Offline credentials archive

The offline credentials file is a gzipped tar archive of flat entries, each
a small JSON key record. Key pairs are stored as siblings:

  tufrepo/keys/offline-root-<keyid>.pub
  tufrepo/keys/offline-root-<keyid>.sec

The archive is always rewritten in full. New archives are written to a
temporary file next to the destination and renamed over it, so a reader
never observes a half-written file and a failed rename leaves the new
private keys recoverable from the temporary file.

Concurrency: callers own the credentials path exclusively for the duration
of a rotation. Nothing here locks the file.
"""

from __future__ import annotations
import io
import json
import logging
import os
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Dict, Iterator, Tuple

from jsonschema import ValidationError

from . import schemas
from .errors import (
    CredentialCommitError,
    CredsFormatError,
    CredsNotWritableError,
    KeyNotFoundError,
    UnsupportedAlgorithmError,
)
from .key_types import KeyPair, Signer, parse_key_type

logger = logging.getLogger(__name__)

OfflineCreds = Dict[str, bytes]

KEYS_PREFIX = "tufrepo/keys/"
PUBLIC_SUFFIX = ".pub"
PRIVATE_SUFFIX = ".sec"


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def load_offline_creds(path: Path) -> OfflineCreds:
    """Read every regular file entry of the archive into ``{name: bytes}``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        CredsFormatError: If the file is not a gzipped tar archive.
    """
    path = Path(path)
    creds: OfflineCreds = {}
    try:
        with tarfile.open(path, mode="r:gz") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                f = tar.extractfile(member)
                if f is None:
                    continue
                creds[member.name] = f.read()
    except FileNotFoundError:
        raise
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise CredsFormatError(f"{path}: {exc}") from exc
    logger.debug("Loaded %d entries from %s", len(creds), path)
    return creds


def create_empty_creds() -> OfflineCreds:
    return {}


def iter_key_records(creds: OfflineCreds, suffix: str) -> Iterator[Tuple[str, dict]]:
    """Yield ``(name, record)`` for every entry ending in ``suffix``."""
    for name in sorted(creds):
        if name.endswith(suffix):
            yield name, parse_key_record(name, creds[name])


def parse_key_record(name: str, data: bytes) -> dict:
    try:
        record = json.loads(data)
        schemas.validate(record, schemas.KEY_RECORD_SCHEMA)
    except (ValueError, ValidationError) as exc:
        raise CredsFormatError(f"unable to parse key record {name}: {exc}") from exc
    return record


def find_signer(key_id: str, public_value: str, creds: OfflineCreds) -> Signer:
    """
    Locate the private key whose public half equals ``public_value``.

    The archive is matched by public key value, not by file name, so keys
    created by other tools (with other naming schemes) are found as well.

    Raises:
        KeyNotFoundError: If no ``.pub`` entry matches or its ``.sec`` sibling is missing.
        CredsFormatError: If a matching entry cannot be parsed.
    """
    wanted = (public_value or "").strip()
    for name, record in iter_key_records(creds, PUBLIC_SUFFIX):
        if (record["keyval"].get("public") or "").strip() != wanted:
            continue
        sec_name = name[: -len(PUBLIC_SUFFIX)] + PRIVATE_SUFFIX
        if sec_name not in creds:
            raise KeyNotFoundError(key_id, f"{name} has no {sec_name} sibling")
        sec = parse_key_record(sec_name, creds[sec_name])
        try:
            key_type = parse_key_type(sec["keytype"])
        except UnsupportedAlgorithmError as exc:
            raise CredsFormatError(f"unsupported key type for {sec_name}: {sec['keytype']}") from exc
        try:
            private_key = key_type.parse_private(sec["keyval"].get("private") or "")
        except (ValueError, TypeError) as exc:
            raise CredsFormatError(f"unable to parse key value for {sec_name}: {exc}") from exc
        return Signer(id=key_id, key_type=key_type, private_key=private_key)
    raise KeyNotFoundError(key_id)


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------

def key_pair_base_name(role: str, key_id: str) -> str:
    return f"{KEYS_PREFIX}offline-{role}-{key_id}"


def add_key_pair(creds: OfflineCreds, role: str, key_pair: KeyPair) -> OfflineCreds:
    """Return a copy of ``creds`` with the key pair's ``.pub``/``.sec`` entries added."""
    base = key_pair_base_name(role, key_pair.key_id)
    updated = dict(creds)
    updated[base + PUBLIC_SUFFIX] = key_pair.public_bytes
    updated[base + PRIVATE_SUFFIX] = key_pair.private_bytes
    return updated


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _archive_bytes(creds: OfflineCreds) -> bytes:
    buf = io.BytesIO()
    now = int(time.time())
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name in sorted(creds):
            data = creds[name]
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o600
            info.mtime = now
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def assert_writable(path: Path) -> None:
    """Fail before key generation if ``path`` (or its directory, for a new file) is not writable."""
    path = Path(path)
    target = path if path.exists() else path.parent
    if not os.access(target, os.W_OK):
        raise CredsNotWritableError(str(path))


def save_temp_creds(path: Path, creds: OfflineCreds) -> Path:
    """Write the archive to an owner-only temporary file next to ``path`` and return it."""
    path = Path(path)
    data = _archive_bytes(creds)
    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
        )
    except OSError as exc:
        raise CredsNotWritableError(f"{path}: {exc}") from exc
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, 0o600)
    except OSError as exc:
        raise CredsNotWritableError(f"{tmp}: {exc}") from exc
    logger.debug("Wrote %d credential entries to %s", len(creds), tmp)
    return tmp


def replace_creds(tmp: Path, path: Path) -> None:
    """Atomically move ``tmp`` over ``path``. On failure ``tmp`` is left in place."""
    try:
        os.replace(tmp, path)
    except OSError as exc:
        raise CredentialCommitError(tmp, f"{path}: {exc}") from exc


def commit_creds(path: Path, creds: OfflineCreds) -> Path:
    """Write ``creds`` to ``path`` via temp file + rename. Returns ``path``."""
    tmp = save_temp_creds(path, creds)
    replace_creds(tmp, path)
    return Path(path)
