"""
metadata.py - TUF root and targets documents as handled during rotation

A root document delegates trust: its ``keys`` map holds public key records
and its ``roles`` map names, for every role, the key ids allowed to sign
and how many of them must sign. Targets documents are opaque here; rotation
only ever replaces their signature lists.

Wire shape (both documents):
  {"signed": {...}, "signatures": [{"keyid", "method", "sig"}, ...]}
"""

from __future__ import annotations
import base64
import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from .canonical_json import canonical_bytes

EXPIRES_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ROLE_ROOT = "root"
ROLE_TARGETS = "targets"


@dataclass(frozen=True)
class Signature:
    """A detached signature over the canonical bytes of a ``signed`` object."""
    keyid: str
    method: str
    sig: str  # base64

    @property
    def sig_bytes(self) -> bytes:
        return base64.b64decode(self.sig)

    @classmethod
    def from_bytes(cls, keyid: str, method: str, sig_bytes: bytes) -> "Signature":
        return cls(keyid=keyid, method=method, sig=base64.b64encode(sig_bytes).decode("ascii"))

    def to_dict(self) -> Dict[str, str]:
        return {"keyid": self.keyid, "method": self.method, "sig": self.sig}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        return cls(keyid=data["keyid"], method=data["method"], sig=data["sig"])


@dataclass
class Role:
    keyids: List[str]
    threshold: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"keyids": list(self.keyids), "threshold": self.threshold}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Role":
        return cls(keyids=list(data.get("keyids") or []), threshold=int(data.get("threshold", 1)))


@dataclass
class RootDocument:
    """A TUF root document.

    ``extra`` carries every other field of the signed object (``_type``,
    ``consistent_snapshot``, ...) so that a parse/serialize cycle never drops
    data the transaction service expects back.
    """
    version: int
    expires: str
    keys: Dict[str, Dict[str, Any]]
    roles: Dict[str, Role]
    signatures: List[Signature] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=lambda: {"_type": "Root"})

    def signed_dict(self) -> Dict[str, Any]:
        signed = dict(copy.deepcopy(self.extra))
        signed.update({
            "expires": self.expires,
            "keys": copy.deepcopy(self.keys),
            "roles": {name: role.to_dict() for name, role in self.roles.items()},
            "version": self.version,
        })
        return signed

    def signed_bytes(self) -> bytes:
        """Canonical bytes that every root signature covers."""
        return canonical_bytes(self.signed_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signed": self.signed_dict(),
            "signatures": [s.to_dict() for s in self.signatures],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RootDocument":
        signed = data["signed"]
        extra = {
            k: copy.deepcopy(v) for k, v in signed.items()
            if k not in ("expires", "keys", "roles", "version")
        }
        return cls(
            version=int(signed["version"]),
            expires=signed["expires"],
            keys=copy.deepcopy(signed.get("keys") or {}),
            roles={name: Role.from_dict(r) for name, r in (signed.get("roles") or {}).items()},
            signatures=[Signature.from_dict(s) for s in data.get("signatures") or []],
            extra=extra,
        )

    def copy(self) -> "RootDocument":
        return copy.deepcopy(self)

    def role(self, name: str) -> Role:
        """Return a role, creating an empty one if the document lacks it."""
        if name not in self.roles:
            self.roles[name] = Role(keyids=[], threshold=1)
        return self.roles[name]

    def role_key_ids(self, name: str) -> List[str]:
        role = self.roles.get(name)
        return list(role.keyids) if role else []

    def referenced_key_ids(self) -> Set[str]:
        return {kid for role in self.roles.values() for kid in role.keyids}

    def public_value(self, key_id: str) -> Optional[str]:
        record = self.keys.get(key_id)
        if not record:
            return None
        return (record.get("keyval") or {}).get("public")


@dataclass
class TargetsDocument:
    """Production targets for one deployment tag. ``signed`` is never modified here."""
    signed: Dict[str, Any]
    signatures: List[Signature] = field(default_factory=list)

    def signed_bytes(self) -> bytes:
        return canonical_bytes(self.signed)

    def with_signatures(self, signatures: List[Signature]) -> "TargetsDocument":
        return TargetsDocument(signed=copy.deepcopy(self.signed), signatures=list(signatures))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signed": copy.deepcopy(self.signed),
            "signatures": [s.to_dict() for s in self.signatures],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetsDocument":
        return cls(
            signed=copy.deepcopy(data["signed"]),
            signatures=[Signature.from_dict(s) for s in data.get("signatures") or []],
        )


def format_expires(when: datetime) -> str:
    return when.astimezone(timezone.utc).strftime(EXPIRES_FORMAT)


def one_year_from(now: Optional[datetime] = None) -> str:
    """Expiry one calendar year ahead, truncated to whole seconds (Feb 29 rolls to Mar 1)."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)
    try:
        later = now.replace(year=now.year + 1)
    except ValueError:
        later = now.replace(year=now.year + 1, month=2, day=28) + timedelta(days=1)
    return format_expires(later)
