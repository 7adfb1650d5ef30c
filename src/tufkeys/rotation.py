"""
rotation.py - Offline key rotation for the TUF root and targets roles

A rotation never signs anything with the key it introduces alone:

  root     The new root key replaces the old one in the root role. The new
           root is co-signed by the old root keys (from the last committed
           root) and the new key, so clients trusting either accept it.
  targets  The online (CI) targets key is kept and a new offline targets
           key is added next to it. Existing production targets are then
           re-signed with the new offline key (see targets_resign.py).

Every step below is a pure transform ``RootDocument -> RootDocument``;
signing is a separate pass. Nothing here talks to the transaction service.

Process (both roles):
  1. Check that a root updates transaction is in progress and not blocked.
  2. Resolve role inputs (targets: the online key id) before generating keys.
  3. Generate the new key pair and insert it into the staged root.
  4. Clear signatures, prune unused keys, check invariants.
  5. Derive the production root.
  6. Optionally sign both roots (``sign_new_root``).
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import (
    InvalidOptionsError,
    KeyNotFoundError,
    MissingOnlineKeyError,
    RootInvariantError,
    RotationBlockedError,
    SigningError,
    UnsupportedRoleError,
)
from .key_types import KeyPair, Signer, TufKeyType, generate_key_pair
from .metadata import ROLE_ROOT, ROLE_TARGETS, RootDocument, one_year_from
from .offline_creds import OfflineCreds, add_key_pair, find_signer
from .signing import sign_metadata, verify_root_role
from .transactions import STATUS_STARTED, RootUpdates

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Root document transforms
# ---------------------------------------------------------------------------

def resolve_threshold(prior: int, key_count: int) -> int:
    """Keep the prior threshold if it can still be met by ``key_count`` keys, else 1."""
    if 1 <= prior <= key_count:
        return prior
    return 1


def replace_offline_root_key(
    root: RootDocument,
    key_pair: KeyPair,
    now: Optional[datetime] = None,
) -> RootDocument:
    """Make ``key_pair`` the only root key and push expiry one year out."""
    new_root = root.copy()
    new_root.keys[key_pair.key_id] = dict(key_pair.public)
    role = new_root.role(ROLE_ROOT)
    role.keyids = [key_pair.key_id]
    role.threshold = resolve_threshold(role.threshold, len(role.keyids))
    new_root.expires = one_year_from(now)
    new_root.signatures = []
    return new_root


def replace_offline_targets_key(
    root: RootDocument,
    online_key_id: str,
    key_pair: KeyPair,
) -> RootDocument:
    """Set the targets role to ``[online, new]``; either key alone can sign."""
    new_root = root.copy()
    new_root.keys[key_pair.key_id] = dict(key_pair.public)
    role = new_root.role(ROLE_TARGETS)
    role.keyids = [online_key_id, key_pair.key_id]
    role.threshold = resolve_threshold(role.threshold, len(role.keyids))
    new_root.signatures = []
    return new_root


def remove_unused_keys(root: RootDocument) -> RootDocument:
    """Drop every key no role references. Idempotent."""
    new_root = root.copy()
    used = new_root.referenced_key_ids()
    new_root.keys = {kid: rec for kid, rec in new_root.keys.items() if kid in used}
    return new_root


def gen_prod_root(root: RootDocument, online_key_ids: Iterable[str]) -> RootDocument:
    """
    Derive the production root from the CI root.

    Production targets are signed offline only, so the production targets
    role lists the offline targets keys. A role without any offline key
    yet is copied unchanged.
    """
    online = set(online_key_ids)
    prod = root.copy()
    prod.signatures = []
    targets = prod.roles.get(ROLE_TARGETS)
    if targets is not None:
        offline = [kid for kid in targets.keyids if kid not in online]
        if offline:
            targets.keyids = offline
            targets.threshold = resolve_threshold(targets.threshold, len(offline))
    return remove_unused_keys(prod)


def check_root_invariants(root: RootDocument) -> None:
    """
    Raise ``RootInvariantError`` unless every role has unique key ids that
    all exist in the key map and a threshold in ``1..len(keyids)``.
    """
    if ROLE_ROOT not in root.roles:
        raise RootInvariantError("root role is missing")
    for name, role in sorted(root.roles.items()):
        if len(set(role.keyids)) != len(role.keyids):
            raise RootInvariantError(f"role {name} lists a key id twice: {role.keyids}")
        missing = [kid for kid in role.keyids if kid not in root.keys]
        if missing:
            raise RootInvariantError(f"role {name} references unknown keys: {missing}")
        if not 1 <= role.threshold <= len(role.keyids):
            raise RootInvariantError(
                f"role {name} threshold {role.threshold} cannot be met by {len(role.keyids)} keys"
            )


# ---------------------------------------------------------------------------
# Transaction status
# ---------------------------------------------------------------------------

def check_updates_status(
    updates: RootUpdates,
    rotation: "OfflineKeyRotation",
) -> Tuple[RootDocument, RootDocument]:
    """Return ``(current_root, staged_root)`` copies if the rotation may proceed.

    ``current_root`` is the last committed CI root (the staged root when the
    factory has none yet); it only serves to find the old root signers.
    """
    if updates.status != STATUS_STARTED:
        raise RotationBlockedError(
            f"no TUF root updates transaction in progress (status: {updates.status or 'none'})"
        )
    if updates.updated is None:
        raise RotationBlockedError("transaction has no staged TUF root")
    if rotation.blocked_by_active_waves and updates.active_waves:
        raise RotationBlockedError(
            f"cannot rotate the offline {rotation.role} key while waves are active: "
            f"{', '.join(updates.active_waves)}"
        )
    current = updates.current if updates.current is not None else updates.updated
    return current.copy(), updates.updated.copy()


# ---------------------------------------------------------------------------
# Rotation variants
# ---------------------------------------------------------------------------

class OfflineKeyRotation:
    """Common interface of the root and targets rotations."""
    role: str = ""
    blocked_by_active_waves: bool = True
    resigns_targets: bool = False
    creates_missing_store: bool = False

    def credential_paths(self, keys_file, targets_keys_file, sign: bool):
        """Return ``(store_path, signing_path)``: where the new key goes, which archive signs the root."""
        raise NotImplementedError

    def online_key_id(self, updates: RootUpdates) -> Optional[str]:
        return None

    def apply(
        self,
        staged: RootDocument,
        key_pair: KeyPair,
        online_key_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> RootDocument:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class RootKeyRotation(OfflineKeyRotation):
    role = ROLE_ROOT

    def credential_paths(self, keys_file, targets_keys_file, sign: bool):
        if not keys_file:
            raise InvalidOptionsError("the --keys option is required to rotate the offline TUF root key")
        if targets_keys_file:
            raise InvalidOptionsError(
                "the --targets-keys option is only valid to rotate the offline TUF targets key"
            )
        return keys_file, (keys_file if sign else None)

    def apply(self, staged, key_pair, online_key_id, now=None):
        return replace_offline_root_key(staged, key_pair, now)


class TargetsKeyRotation(OfflineKeyRotation):
    role = ROLE_TARGETS
    resigns_targets = True
    creates_missing_store = True

    def credential_paths(self, keys_file, targets_keys_file, sign: bool):
        store = targets_keys_file or keys_file
        if not store:
            raise InvalidOptionsError(
                "the --keys or --targets-keys option is required to rotate the offline TUF targets key"
            )
        if sign and not keys_file:
            raise InvalidOptionsError("the --keys option is required to sign the new TUF root")
        return store, (keys_file if sign else None)

    def online_key_id(self, updates: RootUpdates) -> str:
        kid = updates.online_keys.get(ROLE_TARGETS)
        if not kid:
            raise MissingOnlineKeyError("the transaction lists no online targets key")
        if updates.updated is not None and kid not in updates.updated.keys:
            raise MissingOnlineKeyError(f"online targets key {kid} is not in the staged root")
        return kid

    def apply(self, staged, key_pair, online_key_id, now=None):
        if not online_key_id:
            raise MissingOnlineKeyError()
        return replace_offline_targets_key(staged, online_key_id, key_pair)


ROTATIONS: Dict[str, OfflineKeyRotation] = {
    ROLE_ROOT: RootKeyRotation(),
    ROLE_TARGETS: TargetsKeyRotation(),
}


def parse_offline_role(name: str) -> OfflineKeyRotation:
    """Look up the rotation for ``name`` (``root`` or ``targets``, any case)."""
    try:
        return ROTATIONS[(name or "").strip().lower()]
    except KeyError:
        raise UnsupportedRoleError(f"role {name!r}") from None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class StagedRotation:
    """Everything a rotation produced, ready for upload."""
    role: str
    key_pair: KeyPair
    current_root: RootDocument
    ci_root: RootDocument
    prod_root: RootDocument
    creds: OfflineCreds
    online_key_ids: List[str]
    online_key_id: Optional[str] = None

    @property
    def new_key_id(self) -> str:
        return self.key_pair.key_id


def rotate_staged_root(
    rotation: OfflineKeyRotation,
    updates: RootUpdates,
    key_type: TufKeyType,
    creds: OfflineCreds,
    now: Optional[datetime] = None,
) -> StagedRotation:
    """Run the rotation state machine on the staged root of ``updates``.

    ``creds`` is not modified; the returned ``StagedRotation.creds`` holds
    the new key pair in addition to the existing entries.
    """
    current, staged = check_updates_status(updates, rotation)
    online_key_id = rotation.online_key_id(updates)

    key_pair = generate_key_pair(key_type)
    logger.info("Generated new offline %s key %s (%s)", rotation.role, key_pair.key_id, key_type.name)

    ci_root = rotation.apply(staged, key_pair, online_key_id, now)
    ci_root.signatures = []
    ci_root = remove_unused_keys(ci_root)
    check_root_invariants(ci_root)

    online_ids = sorted(kid for kid in updates.online_keys.values() if kid)
    prod_root = gen_prod_root(ci_root, online_ids)
    check_root_invariants(prod_root)

    return StagedRotation(
        role=rotation.role,
        key_pair=key_pair,
        current_root=current,
        ci_root=ci_root,
        prod_root=prod_root,
        creds=add_key_pair(creds, rotation.role, key_pair),
        online_key_ids=online_ids,
        online_key_id=online_key_id,
    )


def root_signer_ids(current: RootDocument, new_root: RootDocument) -> List[str]:
    """Root key ids that must sign: the committed root's, then the new root's."""
    ids: List[str] = []
    for kid in current.role_key_ids(ROLE_ROOT) + new_root.role_key_ids(ROLE_ROOT):
        if kid not in ids:
            ids.append(kid)
    return ids


def root_signers(current: RootDocument, new_root: RootDocument, creds: OfflineCreds) -> List[Signer]:
    signers = []
    for kid in root_signer_ids(current, new_root):
        public = new_root.public_value(kid) or current.public_value(kid)
        if not public:
            raise KeyNotFoundError(kid, "no public key recorded in the committed or new root")
        signers.append(find_signer(kid, public, creds))
    return signers


def sign_new_root(staged: StagedRotation, creds: OfflineCreds) -> StagedRotation:
    """
    Sign the CI and production roots with the old and new offline root keys.

    Before returning, checks the transition property: the new CI root meets
    the root threshold of both the committed root and itself.
    """
    signers = root_signers(staged.current_root, staged.ci_root, creds)
    logger.info("Signing new TUF root with keys: %s", ", ".join(s.id for s in signers))

    ci_root = staged.ci_root.copy()
    ci_root.signatures = sign_metadata(ci_root.signed_dict(), signers)
    prod_root = staged.prod_root.copy()
    prod_root.signatures = sign_metadata(prod_root.signed_dict(), signers)

    if not verify_root_role(ci_root, staged.current_root):
        raise SigningError("new TUF root does not satisfy the committed root's root threshold")
    if not verify_root_role(ci_root, ci_root):
        raise SigningError("new TUF root does not satisfy its own root threshold")
    if not verify_root_role(prod_root, prod_root):
        raise SigningError("new production TUF root does not satisfy its own root threshold")
    return replace(staged, ci_root=ci_root, prod_root=prod_root)
