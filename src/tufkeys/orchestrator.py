"""
orchestrator.py - Rotate an offline TUF key inside a root updates transaction

Sequence:
  1. Validate options; load the credentials archive (a missing targets
     archive is created empty and written at once) and check it is writable.
  2. Fetch the transaction state and run the role's rotation.
  3. Targets only: re-sign existing production targets with the new key.
  4. Optionally sign the new CI and production roots.
  5. Write the updated archive to a temporary file next to the original.
  6. Upload the new roots (and targets signatures) for the transaction.
  7. Rename the temporary archive over the original.

Any failure before step 5 leaves remote and on-disk state untouched (a
missing targets archive created in step 1 stays, empty). If the upload
fails the original archive is untouched and the temporary file is kept and
reported, since it holds the only copy of the new private key. If the
rename after a successful upload fails, the error names the temporary
file; it is never retried, because a retry would generate and upload a
different key.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .errors import InvalidOptionsError, RemoteTransactionError
from .key_types import DEFAULT_KEY_TYPE, parse_key_type
from .metadata import RootDocument, Signature
from .offline_creds import (
    OfflineCreds,
    assert_writable,
    commit_creds,
    create_empty_creds,
    load_offline_creds,
    replace_creds,
    save_temp_creds,
)
from .rotation import OfflineKeyRotation, parse_offline_role, rotate_staged_root, sign_new_root
from .targets_resign import resign_prod_targets
from .transactions import TransactionService

logger = logging.getLogger(__name__)


@dataclass
class RotationContext:
    """Inputs of one rotation. Nothing is read from globals or the environment."""
    factory: str
    txid: str
    role: str
    service: TransactionService
    keys_file: Optional[Path] = None
    targets_keys_file: Optional[Path] = None
    key_type: str = DEFAULT_KEY_TYPE
    sign: bool = False


@dataclass
class RotationOutcome:
    """Result of a completed rotation."""
    role: str
    new_key_id: str
    creds_file: Path
    ci_root: RootDocument
    prod_root: RootDocument
    targets_signatures: Dict[str, List[Signature]] = field(default_factory=dict)
    signed: bool = False


def _open_creds(path: Path, create_missing: bool) -> OfflineCreds:
    if path.exists():
        creds = load_offline_creds(path)
        assert_writable(path)
        return creds
    if not create_missing:
        raise InvalidOptionsError(f"credentials file {path} does not exist")
    assert_writable(path)
    creds = create_empty_creds()
    commit_creds(path, creds)
    return creds


def _same_file(a: Optional[Path], b: Optional[Path]) -> bool:
    if a is None or b is None:
        return False
    return Path(a).resolve() == Path(b).resolve()


def rotate_offline_key(
    ctx: RotationContext,
    now: Optional[datetime] = None,
    quiet: bool = False,
) -> RotationOutcome:
    """
    Rotate the offline key of ``ctx.role`` and stage it in ``ctx.txid``.

    Args:
        ctx: Rotation inputs.
        now: Clock override for the new root expiry.
        quiet: Suppress progress output.

    Returns:
        RotationOutcome describing what was uploaded and committed.

    Raises:
        TufKeysError: Any failure. ``RemoteTransactionError.temp_path`` or
            ``CredentialCommitError.temp_path`` names the file holding the new
            private key when one was written.
    """
    def log(msg: str) -> None:
        logger.info(msg)
        if not quiet:
            print(msg)

    rotation: OfflineKeyRotation = parse_offline_role(ctx.role)
    key_type = parse_key_type(ctx.key_type)
    keys_file = Path(ctx.keys_file) if ctx.keys_file else None
    targets_keys_file = Path(ctx.targets_keys_file) if ctx.targets_keys_file else None
    store_path, signing_path = rotation.credential_paths(keys_file, targets_keys_file, ctx.sign)

    signing_creds: Optional[OfflineCreds] = None
    shares_store = _same_file(signing_path, store_path)
    if signing_path is not None and not shares_store:
        if not signing_path.exists():
            raise InvalidOptionsError(f"credentials file {signing_path} does not exist")
        signing_creds = load_offline_creds(signing_path)
    creds = _open_creds(store_path, rotation.creates_missing_store)

    updates = ctx.service.get_root_updates(ctx.factory)
    staged = rotate_staged_root(rotation, updates, key_type, creds, now=now)
    log(f"= New {rotation.role} keyid: {staged.new_key_id}")

    targets_signatures: Dict[str, List[Signature]] = {}
    if rotation.resigns_targets:
        log("= Re-signing prod targets")
        targets_signatures = resign_prod_targets(
            ctx.service, ctx.factory, staged.ci_root, staged.online_key_id, staged.creds
        )

    if ctx.sign:
        staged = sign_new_root(staged, staged.creds if shares_store else signing_creds)

    log("= Uploading new TUF root")
    tmp = save_temp_creds(store_path, staged.creds)
    try:
        ctx.service.put_root_updates(
            ctx.factory,
            ctx.txid,
            staged.ci_root,
            staged.prod_root,
            targets_signatures or None,
        )
    except RemoteTransactionError as exc:
        raise RemoteTransactionError(exc.context, temp_path=tmp) from exc
    except Exception as exc:
        raise RemoteTransactionError(f"{type(exc).__name__}: {exc}", temp_path=tmp) from exc

    replace_creds(tmp, store_path)
    logger.info("Committed new offline %s key %s to %s", rotation.role, staged.new_key_id, store_path)

    return RotationOutcome(
        role=rotation.role,
        new_key_id=staged.new_key_id,
        creds_file=store_path,
        ci_root=staged.ci_root,
        prod_root=staged.prod_root,
        targets_signatures=targets_signatures,
        signed=ctx.sign,
    )
