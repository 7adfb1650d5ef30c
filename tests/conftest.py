"""Shared builders for tufkeys tests: key pairs, roots, transactions, archives."""

import json
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from tufkeys.canonical_json import canonical_bytes
from tufkeys.key_types import KEY_TYPES, KeyPair, generate_key_pair
from tufkeys.metadata import Role, RootDocument, TargetsDocument
from tufkeys.offline_creds import add_key_pair, commit_creds
from tufkeys.transactions import (
    STATUS_STARTED,
    DirectoryTransactionService,
    InMemoryTransactionService,
    RootUpdates,
)

ED25519 = KEY_TYPES["ed25519"]
NOW = datetime(2026, 3, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)
FACTORY = "acme"
TXID = "tx-1"


def make_root(
    root_keys: List[KeyPair],
    targets_keys: List[KeyPair],
    root_threshold: int = 1,
    targets_threshold: int = 1,
    version: int = 3,
) -> RootDocument:
    keys = {kp.key_id: dict(kp.public) for kp in root_keys + targets_keys}
    return RootDocument(
        version=version,
        expires="2027-01-01T00:00:00Z",
        keys=keys,
        roles={
            "root": Role([kp.key_id for kp in root_keys], root_threshold),
            "targets": Role([kp.key_id for kp in targets_keys], targets_threshold),
        },
        extra={"_type": "Root", "consistent_snapshot": False},
    )


def make_updates(
    root: RootDocument,
    online_key: Optional[KeyPair],
    current: Optional[RootDocument] = None,
    **kwargs,
) -> RootUpdates:
    online = {"targets": online_key.key_id} if online_key else {}
    return RootUpdates(
        status=STATUS_STARTED,
        updated=root,
        current=current,
        online_keys=online,
        transaction_id=TXID,
        **kwargs,
    )


def make_targets(online_key: KeyPair, tag: str, version: int = 1) -> TargetsDocument:
    signed = {
        "_type": "Targets",
        "version": version,
        "expires": "2027-01-01T00:00:00Z",
        "targets": {
            f"{tag}-lmp-{version}": {
                "hashes": {"sha256": "ab" * 32},
                "length": 1024,
                "custom": {"tags": [tag], "version": str(version)},
            }
        },
    }
    return TargetsDocument(signed=signed, signatures=[online_key.signer.sign(canonical_bytes(signed))])


@pytest.fixture(scope="session")
def root_key() -> KeyPair:
    return generate_key_pair(ED25519)


@pytest.fixture(scope="session")
def online_key() -> KeyPair:
    return generate_key_pair(ED25519)


@pytest.fixture
def factory_root(root_key, online_key) -> RootDocument:
    return make_root([root_key], [online_key])


@pytest.fixture
def root_creds(root_key):
    return add_key_pair({}, "root", root_key)


@pytest.fixture
def keys_file(tmp_path, root_creds):
    return commit_creds(tmp_path / "tuf-root-keys.tgz", root_creds)


@pytest.fixture
def service(factory_root, online_key) -> InMemoryTransactionService:
    return InMemoryTransactionService(
        FACTORY,
        make_updates(factory_root, online_key, current=factory_root.copy()),
        prod_targets={tag: make_targets(online_key, tag) for tag in ("main", "devel", "qa")},
    )


def write_service_dir(path, updates, targets=None, factory=FACTORY) -> DirectoryTransactionService:
    data = updates.to_dict()
    if factory:
        data["factory"] = factory
    path.mkdir(parents=True, exist_ok=True)
    (path / "root-updates.json").write_text(json.dumps(data), encoding="utf-8")
    for tag, doc in (targets or {}).items():
        (path / "prod-targets").mkdir(exist_ok=True)
        (path / "prod-targets" / f"{tag}.json").write_text(json.dumps(doc.to_dict()), encoding="utf-8")
    return DirectoryTransactionService(path)
