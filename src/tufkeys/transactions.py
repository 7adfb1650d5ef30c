"""
transactions.py - TUF root updates transaction service boundary

A rotation is staged inside a remote transaction: the service holds the
committed root, the staged (in-progress) root and the production targets,
and accepts the new roots plus re-signed targets signatures keyed by
transaction id. The service is the only serialization point between
operators; two uploads against the same transaction must be rejected or
reconciled there, not here.

Implementations:
  InMemoryTransactionService   tests and embedding
  DirectoryTransactionService  JSON files in a directory (air-gapped hand-off)
  entry points                 group ``tufkeys.transaction_services``

Directory layout used by ``DirectoryTransactionService``:
  root-updates.json
  prod-targets/<tag>.json
  uploads/<txid>.json
"""

from __future__ import annotations
import copy
import importlib.metadata
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from jsonschema import ValidationError

from . import schemas
from .errors import InvalidOptionsError, RemoteTransactionError
from .metadata import RootDocument, Signature, TargetsDocument

logger = logging.getLogger(__name__)

STATUS_STARTED = "Started"
ENTRY_POINT_GROUP = "tufkeys.transaction_services"

TargetsSignatures = Dict[str, List[Signature]]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class RootUpdates:
    """State of a factory's TUF root updates transaction."""
    status: str
    updated: Optional[RootDocument]
    current: Optional[RootDocument] = None
    online_keys: Dict[str, str] = field(default_factory=dict)
    active_waves: List[str] = field(default_factory=list)
    transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "transaction-id": self.transaction_id,
            "current": {"ci-root": self.current.to_dict() if self.current else None},
            "updated": {
                "ci-root": self.updated.to_dict() if self.updated else None,
                "online-keys": dict(self.online_keys),
            },
            "active-waves": list(self.active_waves),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RootUpdates":
        """Parse and validate a service response.

        Raises:
            RemoteTransactionError: If a root document is malformed.
        """
        current = (data.get("current") or {}).get("ci-root")
        updated = data.get("updated") or {}
        staged = updated.get("ci-root")
        return cls(
            status=str(data.get("status") or ""),
            transaction_id=data.get("transaction-id"),
            current=_parse_root(current, "current ci-root") if current else None,
            updated=_parse_root(staged, "updated ci-root") if staged else None,
            online_keys={str(k): str(v) for k, v in (updated.get("online-keys") or {}).items()},
            active_waves=[str(w) for w in data.get("active-waves") or []],
        )


def _parse_root(data: Dict[str, Any], what: str) -> RootDocument:
    try:
        schemas.validate(data, schemas.ROOT_SCHEMA)
    except ValidationError as exc:
        raise RemoteTransactionError(f"malformed {what}: {exc.message}") from exc
    return RootDocument.from_dict(data)


def parse_targets(data: Dict[str, Any], tag: str) -> TargetsDocument:
    try:
        schemas.validate(data, schemas.TARGETS_SCHEMA)
    except ValidationError as exc:
        raise RemoteTransactionError(f"malformed production targets for tag {tag}: {exc.message}") from exc
    return TargetsDocument.from_dict(data)


def upload_dict(
    ci_root: RootDocument,
    prod_root: RootDocument,
    targets_signatures: Optional[TargetsSignatures] = None,
) -> Dict[str, Any]:
    """Body of a root updates upload."""
    body: Dict[str, Any] = {
        "ci-root": ci_root.to_dict(),
        "prod-root": prod_root.to_dict(),
    }
    if targets_signatures:
        body["targets-signatures"] = {
            tag: [s.to_dict() for s in sigs] for tag, sigs in sorted(targets_signatures.items())
        }
    return body


# ---------------------------------------------------------------------------
# Service protocol
# ---------------------------------------------------------------------------

class TransactionService(Protocol):
    """Operations a rotation consumes from the transaction service.

    Implementations raise ``RemoteTransactionError`` for any fetch or upload
    failure and own their network timeouts.
    """

    def get_root_updates(self, factory: str) -> RootUpdates:
        ...

    def put_root_updates(
        self,
        factory: str,
        txid: str,
        ci_root: RootDocument,
        prod_root: RootDocument,
        targets_signatures: Optional[TargetsSignatures] = None,
    ) -> None:
        ...

    def list_prod_targets(self, factory: str) -> Dict[str, TargetsDocument]:
        """Return production targets keyed by tag; empty if there are none."""
        ...


def _check_txid(updates: RootUpdates, txid: str) -> None:
    if not txid:
        raise RemoteTransactionError("a transaction id is required to upload TUF root updates")
    if updates.transaction_id and updates.transaction_id != txid:
        raise RemoteTransactionError(
            f"transaction id {txid} does not match the transaction in progress"
        )


class InMemoryTransactionService:
    """Transaction service held in memory. ``fail_upload`` makes uploads raise."""

    def __init__(
        self,
        factory: str,
        updates: RootUpdates,
        prod_targets: Optional[Dict[str, TargetsDocument]] = None,
        fail_upload: Optional[str] = None,
    ) -> None:
        self.factory = factory
        self.updates = updates
        self.prod_targets = dict(prod_targets or {})
        self.fail_upload = fail_upload
        self.uploads: List[Dict[str, Any]] = []

    def _check_factory(self, factory: str) -> None:
        if factory != self.factory:
            raise RemoteTransactionError(f"unknown factory {factory}")

    def get_root_updates(self, factory: str) -> RootUpdates:
        self._check_factory(factory)
        return copy.deepcopy(self.updates)

    def list_prod_targets(self, factory: str) -> Dict[str, TargetsDocument]:
        self._check_factory(factory)
        return copy.deepcopy(self.prod_targets)

    def put_root_updates(self, factory, txid, ci_root, prod_root, targets_signatures=None) -> None:
        self._check_factory(factory)
        _check_txid(self.updates, txid)
        if self.fail_upload:
            raise RemoteTransactionError(self.fail_upload)
        body = upload_dict(ci_root, prod_root, targets_signatures)
        body["txid"] = txid
        self.uploads.append(body)
        self.updates.updated = ci_root.copy()
        for tag, sigs in (targets_signatures or {}).items():
            if tag in self.prod_targets:
                self.prod_targets[tag] = self.prod_targets[tag].with_signatures(sigs)


class DirectoryTransactionService:
    """Transaction service backed by JSON files under ``root``.

    The factory name is recorded in ``root-updates.json`` under ``factory``
    when present and must then match.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def updates_path(self) -> Path:
        return self.root / "root-updates.json"

    def _read_json(self, path: Path) -> Dict[str, Any]:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise RemoteTransactionError(f"{path} not found") from exc
        except (OSError, ValueError) as exc:
            raise RemoteTransactionError(f"unable to read {path}: {exc}") from exc

    def _stage_json(self, path: Path, data: Dict[str, Any]) -> Path:
        """Write ``data`` to a temp file next to ``path`` and return the temp path."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=path.name + ".", suffix=".tmp")
        except OSError as exc:
            raise RemoteTransactionError(f"unable to write {path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
        except (OSError, TypeError, ValueError) as exc:
            _discard(Path(tmp))
            raise RemoteTransactionError(f"unable to write {path}: {exc}") from exc
        return Path(tmp)

    def _load_updates(self, factory: str) -> Dict[str, Any]:
        data = self._read_json(self.updates_path)
        recorded = data.get("factory")
        if recorded and recorded != factory:
            raise RemoteTransactionError(f"{self.updates_path} belongs to factory {recorded}, not {factory}")
        return data

    def get_root_updates(self, factory: str) -> RootUpdates:
        return RootUpdates.from_dict(self._load_updates(factory))

    def list_prod_targets(self, factory: str) -> Dict[str, TargetsDocument]:
        self._load_updates(factory)
        targets_dir = self.root / "prod-targets"
        if not targets_dir.is_dir():
            return {}
        return {
            p.stem: parse_targets(self._read_json(p), p.stem)
            for p in sorted(targets_dir.glob("*.json"))
        }

    def put_root_updates(self, factory, txid, ci_root, prod_root, targets_signatures=None) -> None:
        data = self._load_updates(factory)
        _check_txid(RootUpdates.from_dict(data), txid)
        body = upload_dict(ci_root, prod_root, targets_signatures)
        data["updated"] = data.get("updated") or {}
        data["updated"]["ci-root"] = body["ci-root"]
        data["updated"]["prod-root"] = body["prod-root"]

        upload_path = self.root / "uploads" / f"{txid}.json"
        upload_tmp = self._stage_json(upload_path, body)
        try:
            updates_tmp = self._stage_json(self.updates_path, data)
        except RemoteTransactionError:
            _discard(upload_tmp)
            raise

        # Both files land or neither does: the upload record is removed
        # again if root-updates.json cannot be replaced.
        try:
            os.replace(upload_tmp, upload_path)
        except OSError as exc:
            _discard(upload_tmp)
            _discard(updates_tmp)
            raise RemoteTransactionError(f"unable to write {upload_path}: {exc}") from exc
        try:
            os.replace(updates_tmp, self.updates_path)
        except OSError as exc:
            _discard(updates_tmp)
            _discard(upload_path)
            raise RemoteTransactionError(f"unable to write {self.updates_path}: {exc}") from exc
        logger.info("Staged TUF root updates for transaction %s in %s", txid, self.root)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Unable to remove %s: %s", path, exc)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def load_transaction_service(spec: str) -> TransactionService:
    """
    Resolve a service spec: ``dir:<path>`` for ``DirectoryTransactionService``,
    otherwise the name of an entry point in ``tufkeys.transaction_services``
    whose target is called with no arguments.
    """
    if spec.startswith("dir:"):
        return DirectoryTransactionService(Path(spec[len("dir:"):]))

    entry_points = importlib.metadata.entry_points()
    # Python 3.10+ returns EntryPoints; 3.9 returns a dict keyed by group
    if hasattr(entry_points, "select"):
        candidates = entry_points.select(group=ENTRY_POINT_GROUP)
    else:
        candidates = entry_points.get(ENTRY_POINT_GROUP, [])

    for ep in candidates:
        if ep.name == spec:
            factory = ep.load()
            return factory() if callable(factory) else factory
    raise InvalidOptionsError(
        f"unknown transaction service {spec!r}; use dir:<path> or an installed "
        f"{ENTRY_POINT_GROUP} entry point"
    )
