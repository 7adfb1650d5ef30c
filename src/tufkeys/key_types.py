"""
key_types.py - Offline key algorithms, key pairs and signers

Implements:
  - A registry of supported key types (Ed25519, RSA), selectable by name
  - Key pair generation and serialization to TUF key records
  - Key ids derived from the canonical public key record
  - ``Signer``: key id + key type + private key, signing exact byte strings

Key record layout (one JSON object per credential archive entry):
  {"keytype": "ED25519", "keyval": {"public": "<hex>"}}
  {"keytype": "ED25519", "keyval": {"private": "<hex>"}}
  {"keytype": "RSA", "keyval": {"public": "<PEM>"}}
  {"keytype": "RSA", "keyval": {"private": "<PEM>"}}

Ed25519 signs the message itself. RSA signs RSASSA-PSS over a SHA-256
pre-hash, so the ``Signer`` hashes first and hands the digest to the
primitive.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from .canonical_json import canonical_hash
from .errors import SigningError, UnsupportedAlgorithmError
from .metadata import Signature

KeyRecord = Dict[str, Any]


def public_record(keytype: str, public_value: str) -> KeyRecord:
    return {"keytype": keytype, "keyval": {"public": public_value}}


def private_record(keytype: str, private_value: str) -> KeyRecord:
    return {"keytype": keytype, "keyval": {"private": private_value}}


def key_id_from_public_record(record: KeyRecord) -> str:
    """
    Derive the key id of a public key record.
    Format: lowercase hex SHA-256 of the canonical JSON of the record, so the
    same public key always yields the same id wherever it is re-derived.
    """
    return canonical_hash(record)


# ---------------------------------------------------------------------------
# Key types
# ---------------------------------------------------------------------------

class TufKeyType:
    """Base class for a supported signing algorithm."""
    name: str = ""       # value of "keytype" in key records
    sig_name: str = ""   # value of "method" in signatures

    def generate_key(self) -> Any:
        raise NotImplementedError

    def key_values(self, private_key: Any) -> Tuple[str, str]:
        """Return ``(private_value, public_value)`` strings for a private key."""
        raise NotImplementedError

    def parse_private(self, value: str) -> Any:
        raise NotImplementedError

    def signing_hash(self) -> Optional[hashes.HashAlgorithm]:
        """Hash to apply before signing, or None when the primitive signs raw input."""
        return None

    def sign_digest(self, private_key: Any, digest: bytes) -> bytes:
        raise NotImplementedError

    def verify_digest(self, public_value: str, signature: bytes, digest: bytes) -> bool:
        raise NotImplementedError

    def serialize(self, private_key: Any) -> Tuple[KeyRecord, KeyRecord]:
        """Return ``(private_record, public_record)`` for a private key."""
        priv, pub = self.key_values(private_key)
        return private_record(self.name, priv), public_record(self.name, pub)

    def prepare(self, message: bytes) -> bytes:
        h = self.signing_hash()
        if h is None:
            return message
        hasher = hashes.Hash(h)
        hasher.update(message)
        return hasher.finalize()

    def verify(self, public_value: str, signature: bytes, message: bytes) -> bool:
        """Return True iff ``signature`` is valid for ``message``; never raises."""
        try:
            return self.verify_digest(public_value, signature, self.prepare(message))
        except (InvalidSignature, ValueError, TypeError):
            return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Ed25519KeyType(TufKeyType):
    name = "ED25519"
    sig_name = "ed25519"

    def generate_key(self) -> Ed25519PrivateKey:
        return Ed25519PrivateKey.generate()

    def key_values(self, private_key: Ed25519PrivateKey) -> Tuple[str, str]:
        seed = private_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        pub = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        # seed || public, the 64-byte form other TUF tooling stores
        return (seed + pub).hex(), pub.hex()

    def parse_private(self, value: str) -> Ed25519PrivateKey:
        raw = bytes.fromhex(value.strip())
        if len(raw) not in (32, 64):
            raise ValueError(f"Ed25519 private key must be 32 or 64 bytes, got {len(raw)}")
        private_key = Ed25519PrivateKey.from_private_bytes(raw[:32])
        if len(raw) == 64:
            derived = private_key.public_key().public_bytes(
                serialization.Encoding.Raw, serialization.PublicFormat.Raw
            )
            if derived != raw[32:]:
                raise ValueError("Ed25519 private key does not match its embedded public key")
        return private_key

    def sign_digest(self, private_key: Ed25519PrivateKey, digest: bytes) -> bytes:
        return private_key.sign(digest)

    def verify_digest(self, public_value: str, signature: bytes, digest: bytes) -> bool:
        pk = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_value.strip()))
        pk.verify(signature, digest)
        return True


class RsaKeyType(TufKeyType):
    name = "RSA"
    sig_name = "rsassa-pss-sha256"

    def __init__(self, bits: int = 4096):
        self.bits = bits

    def _pss(self) -> padding.PSS:
        return padding.PSS(
            mgf=padding.MGF1(hashes.SHA256()),
            salt_length=padding.PSS.DIGEST_LENGTH,
        )

    def generate_key(self) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(public_exponent=65537, key_size=self.bits)

    def key_values(self, private_key: rsa.RSAPrivateKey) -> Tuple[str, str]:
        priv = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ).decode("ascii")
        pub = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        return priv, pub

    def parse_private(self, value: str) -> rsa.RSAPrivateKey:
        key = serialization.load_pem_private_key(value.encode("ascii"), password=None)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("PEM does not hold an RSA private key")
        return key

    def signing_hash(self) -> hashes.HashAlgorithm:
        return hashes.SHA256()

    def sign_digest(self, private_key: rsa.RSAPrivateKey, digest: bytes) -> bytes:
        return private_key.sign(digest, self._pss(), Prehashed(hashes.SHA256()))

    def verify_digest(self, public_value: str, signature: bytes, digest: bytes) -> bool:
        pk = serialization.load_pem_public_key(public_value.encode("ascii"))
        if not isinstance(pk, rsa.RSAPublicKey):
            return False
        pk.verify(signature, digest, self._pss(), Prehashed(hashes.SHA256()))
        return True

    def __repr__(self) -> str:
        return f"RsaKeyType(bits={self.bits})"


DEFAULT_KEY_TYPE = "ed25519"

KEY_TYPES: Dict[str, TufKeyType] = {
    "ed25519": Ed25519KeyType(),
    "rsa": RsaKeyType(),
}


def parse_key_type(name: Optional[str]) -> TufKeyType:
    """Look up a key type by name, case-insensitively. Empty means Ed25519."""
    key = (name or DEFAULT_KEY_TYPE).strip().lower()
    try:
        return KEY_TYPES[key]
    except KeyError:
        raise UnsupportedAlgorithmError(f"key type {name!r}") from None


# ---------------------------------------------------------------------------
# Signers and key pairs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Signer:
    """Private key material bound to the key id it signs as."""
    id: str
    key_type: TufKeyType
    private_key: Any

    def sign(self, message: bytes) -> Signature:
        """Sign ``message`` exactly as given (pre-hashing first if the key type needs it)."""
        try:
            sig_bytes = self.key_type.sign_digest(self.private_key, self.key_type.prepare(message))
        except Exception as exc:
            raise SigningError(f"key {self.id} ({self.key_type.name}): {exc}") from exc
        return Signature.from_bytes(self.id, self.key_type.sig_name, sig_bytes)

    def __repr__(self) -> str:
        return f"Signer(id={self.id!r}, key_type={self.key_type!r})"


@dataclass(frozen=True)
class KeyPair:
    """A freshly generated key pair and its credential-archive byte forms.

    ``private_bytes`` goes into the offline credentials archive and nowhere
    else; ``__repr__`` leaves it out so it cannot leak through logging.
    """
    signer: Signer
    public: KeyRecord
    private: KeyRecord
    public_bytes: bytes
    private_bytes: bytes

    @property
    def key_id(self) -> str:
        return self.signer.id

    def __repr__(self) -> str:
        return f"KeyPair(key_id={self.key_id!r}, key_type={self.signer.key_type!r})"


def generate_key_pair(key_type: TufKeyType) -> KeyPair:
    """Generate a new key pair of ``key_type``."""
    try:
        sk = key_type.generate_key()
        priv, pub = key_type.serialize(sk)
    except Exception as exc:
        raise SigningError(f"generating {key_type.name} key: {exc}") from exc
    kid = key_id_from_public_record(pub)
    return KeyPair(
        signer=Signer(id=kid, key_type=key_type, private_key=sk),
        public=pub,
        private=priv,
        public_bytes=json.dumps(pub).encode("utf-8"),
        private_bytes=json.dumps(priv).encode("utf-8"),
    )
