"""tufkeys public API.

Offline TUF key rotation: generate a new offline root or targets key, stage
it into a root updates transaction, re-sign production targets, co-sign the
new root and persist the new private key in the offline credentials archive.

Example:
    from pathlib import Path
    from tufkeys import RotationContext, load_transaction_service, rotate_offline_key

    ctx = RotationContext(
        factory="acme",
        txid="abc",
        role="root",
        service=load_transaction_service("dir:./txn"),
        keys_file=Path("tuf-root-keys.tgz"),
        sign=True,
    )
    outcome = rotate_offline_key(ctx)
    print(outcome.new_key_id)
"""

from .canonical_json import canonical_bytes, canonical_dumps, canonical_hash
from .errors import (
    CredentialCommitError,
    CredsFormatError,
    CredsNotWritableError,
    InvalidOptionsError,
    KeyNotFoundError,
    MissingOnlineKeyError,
    RemoteTransactionError,
    RootInvariantError,
    RotationBlockedError,
    SigningError,
    TufKeysError,
    UnsupportedAlgorithmError,
    UnsupportedRoleError,
)
from .key_types import KeyPair, Signer, generate_key_pair, parse_key_type
from .metadata import RootDocument, Role, Signature, TargetsDocument
from .offline_creds import find_signer, load_offline_creds
from .orchestrator import RotationContext, RotationOutcome, rotate_offline_key
from .rotation import parse_offline_role, rotate_staged_root, sign_new_root
from .signing import sign_metadata, verify_root_role
from .transactions import (
    DirectoryTransactionService,
    InMemoryTransactionService,
    RootUpdates,
    TransactionService,
    load_transaction_service,
)

__version__ = "0.3.0"
__all__ = [
    "canonical_bytes",
    "canonical_dumps",
    "canonical_hash",
    "TufKeysError",
    "CredsFormatError",
    "CredsNotWritableError",
    "CredentialCommitError",
    "UnsupportedAlgorithmError",
    "SigningError",
    "KeyNotFoundError",
    "UnsupportedRoleError",
    "MissingOnlineKeyError",
    "RotationBlockedError",
    "RootInvariantError",
    "RemoteTransactionError",
    "InvalidOptionsError",
    "KeyPair",
    "Signer",
    "generate_key_pair",
    "parse_key_type",
    "RootDocument",
    "Role",
    "Signature",
    "TargetsDocument",
    "find_signer",
    "load_offline_creds",
    "RotationContext",
    "RotationOutcome",
    "rotate_offline_key",
    "parse_offline_role",
    "rotate_staged_root",
    "sign_new_root",
    "sign_metadata",
    "verify_root_role",
    "DirectoryTransactionService",
    "InMemoryTransactionService",
    "RootUpdates",
    "TransactionService",
    "load_transaction_service",
]
