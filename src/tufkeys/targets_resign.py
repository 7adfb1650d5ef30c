"""
targets_resign.py - Re-sign production targets under a new offline key set

Production targets are signed by offline targets keys. Once the targets
role points at a new offline key, every existing production targets
document must carry a signature from it, or devices following the
production root would reject targets they already run.

The signed payload of each document is never touched: a new signature list
is computed over its canonical bytes. Signatures by the online (CI) key are
carried over as-is; that key is not available here and its signature stays
valid because the payload does not change.

Nothing is written to the transaction service; the signatures are uploaded
together with the new root by the orchestrator.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Mapping, Optional

from .errors import KeyNotFoundError
from .key_types import Signer
from .metadata import ROLE_TARGETS, RootDocument, TargetsDocument
from .offline_creds import OfflineCreds, find_signer
from .signing import sign_bytes
from .transactions import TargetsSignatures, TransactionService

logger = logging.getLogger(__name__)


def targets_signers(root: RootDocument, online_key_id: Optional[str], creds: OfflineCreds) -> List[Signer]:
    """Signers for every offline key of the targets role, in role order.

    Raises:
        KeyNotFoundError: Naming the first key id with no private key in ``creds``.
    """
    signers = []
    for kid in root.role_key_ids(ROLE_TARGETS):
        if kid == online_key_id:
            continue
        public = root.public_value(kid)
        if not public:
            raise KeyNotFoundError(kid, "the new root has no public key for it")
        signers.append(find_signer(kid, public, creds))
    return signers


def resign_targets(
    targets: Mapping[str, TargetsDocument],
    signers: List[Signer],
    online_key_id: Optional[str],
) -> TargetsSignatures:
    """Return the replacement signature list for every tag."""
    signatures: TargetsSignatures = {}
    for tag in sorted(targets):
        doc = targets[tag]
        kept = [s for s in doc.signatures if online_key_id and s.keyid == online_key_id]
        signatures[tag] = kept + sign_bytes(doc.signed_bytes(), signers)
    return signatures


def resign_prod_targets(
    service: TransactionService,
    factory: str,
    root: RootDocument,
    online_key_id: Optional[str],
    creds: OfflineCreds,
) -> TargetsSignatures:
    """Fetch production targets for ``factory`` and re-sign them for ``root``.

    A factory without production targets yields an empty mapping.
    """
    targets: Dict[str, TargetsDocument] = service.list_prod_targets(factory) or {}
    if not targets:
        logger.info("No production targets to re-sign")
        return {}
    signers = targets_signers(root, online_key_id, creds)
    logger.info(
        "Re-signing production targets for %d tags with keys: %s",
        len(targets), ", ".join(s.id for s in signers),
    )
    return resign_targets(targets, signers, online_key_id)
