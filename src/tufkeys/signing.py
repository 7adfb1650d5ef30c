"""
signing.py - Canonical metadata signing

A metadata payload is serialized to canonical JSON exactly once and every
signer signs that identical byte sequence, so signatures produced by
different keys (old and new root keys during a rotation) all verify
against the same bytes.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from .canonical_json import canonical_bytes
from .key_types import KEY_TYPES, Signer, TufKeyType
from .metadata import RootDocument, Signature


def sign_metadata(payload: Any, signers: Iterable[Signer]) -> List[Signature]:
    """Sign the canonical form of ``payload`` with every signer, in order."""
    return sign_bytes(canonical_bytes(payload), signers)


def sign_bytes(message: bytes, signers: Iterable[Signer]) -> List[Signature]:
    return [signer.sign(message) for signer in signers]


def key_type_for_record(record: Dict[str, Any]) -> Optional[TufKeyType]:
    """Resolve the key type of a public key record, or None if unsupported."""
    name = str(record.get("keytype", "")).lower()
    return KEY_TYPES.get(name)


def verify_signature(record: Dict[str, Any], signature: Signature, message: bytes) -> bool:
    """Verify one signature against a public key record. Never raises."""
    key_type = key_type_for_record(record)
    public = (record.get("keyval") or {}).get("public")
    if key_type is None or not public:
        return False
    if signature.method != key_type.sig_name:
        return False
    try:
        sig_bytes = signature.sig_bytes
    except ValueError:
        return False
    return key_type.verify(public, sig_bytes, message)


def count_valid_signatures(
    root: RootDocument,
    trusted: RootDocument,
    role_name: str = "root",
) -> int:
    """Count distinct keys of ``trusted``'s role that validly signed ``root``."""
    role = trusted.roles.get(role_name)
    if role is None:
        return 0
    message = root.signed_bytes()
    valid = set()
    for sig in root.signatures:
        if sig.keyid not in role.keyids or sig.keyid in valid:
            continue
        record = trusted.keys.get(sig.keyid)
        if record and verify_signature(record, sig, message):
            valid.add(sig.keyid)
    return len(valid)


def verify_root_role(root: RootDocument, trusted: RootDocument) -> bool:
    """
    Return True if ``root`` carries enough valid signatures to satisfy the
    root role threshold of ``trusted``.

    During a rotation both ``verify_root_role(new, previous)`` and
    ``verify_root_role(new, new)`` must hold: a client that still trusts the
    previous root and one that already trusts the new root both accept it.
    """
    role = trusted.roles.get("root")
    if role is None:
        return False
    return count_valid_signatures(root, trusted, "root") >= role.threshold
