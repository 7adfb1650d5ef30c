#!/usr/bin/env python3
"""
cli.py - Command line for offline TUF key rotation

Commands:
  rotate-offline-key  Stage rotation of the offline TUF root or targets key

Examples:
  Rotate the offline root key and co-sign the new root with old and new keys:
    tufkeys rotate-offline-key --factory acme --service dir:./txn \\
      --txid abc --role root --keys tuf-root-keys.tgz --sign

  Rotate the offline targets key into its own archive and sign the new root:
    tufkeys rotate-offline-key --factory acme --service dir:./txn \\
      --txid abc --role targets --keys tuf-root-keys.tgz \\
      --targets-keys tuf-targets-keys.tgz --sign

Environment:
  TUFKEYS_FACTORY   default for --factory
  TUFKEYS_SERVICE   default for --service
"""

from __future__ import annotations
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .errors import CredentialCommitError, RemoteTransactionError, TufKeysError
from .key_types import DEFAULT_KEY_TYPE
from .orchestrator import RotationContext, rotate_offline_key
from .transactions import load_transaction_service

EXIT_FAILED = 1
EXIT_NEEDS_RECOVERY = 2


def _fail_with_error(err: TufKeysError) -> None:
    """Print a structured error message from a ``TufKeysError`` and exit.

    Args:
        err: Rotation error.

    Returns:
        None: This function terminates the process.
    """
    context = f" Context: {err.context}." if err.context else ""
    fix = f" Fix: {err.fix}." if err.fix else ""
    print(f"ERROR: {err.code}. {err.message}{context}{fix}")
    sys.exit(EXIT_FAILED)


def _cli_error(what: str, why: str, fix: str) -> None:
    """Print a teaching-style CLI error and exit.

    Args:
        what: What failed.
        why: Why it failed.
        fix: Recommended remediation.

    Returns:
        None: This function terminates the process.
    """
    print(f"ERROR: {what}. {why}. Fix: {fix}.")
    sys.exit(EXIT_FAILED)


def _commit_failed(err: CredentialCommitError) -> None:
    """The upload went through but the keys file was not replaced."""
    print("\nERROR: Unable to update offline keys file.", err.context or "")
    print("Temp copy still available at:", err.temp_path)
    print("This temp file contains your new factory private key. You must copy this file.")
    sys.exit(EXIT_NEEDS_RECOVERY)


def _upload_failed(err: RemoteTransactionError) -> None:
    print(f"ERROR: {err.code}. {err.message} Context: {err.context}.")
    print("Your offline keys file was not changed.")
    if err.temp_path is not None:
        print("New, unpublished private keys were kept at:", err.temp_path)
        print("Delete it once you have confirmed the new TUF root was not staged.")
    sys.exit(EXIT_FAILED)


def cmd_rotate_offline_key(args: argparse.Namespace) -> None:
    """Handle ``tufkeys rotate-offline-key``.

    Args:
        args: Parsed CLI arguments.
    """
    if not args.factory:
        _cli_error(
            "No factory given",
            "the TUF root updates transaction belongs to a factory",
            "pass --factory or set TUFKEYS_FACTORY",
        )
    if not args.service:
        _cli_error(
            "No transaction service given",
            "the new TUF root is staged through a root updates transaction service",
            "pass --service dir:<path> or the name of an installed service, or set TUFKEYS_SERVICE",
        )

    try:
        ctx = RotationContext(
            factory=args.factory,
            txid=args.txid,
            role=args.role,
            service=load_transaction_service(args.service),
            keys_file=Path(args.keys) if args.keys else None,
            targets_keys_file=Path(args.targets_keys) if args.targets_keys else None,
            key_type=args.key_type,
            sign=args.sign,
        )
        outcome = rotate_offline_key(ctx)
    except CredentialCommitError as err:
        _commit_failed(err)
    except RemoteTransactionError as err:
        _upload_failed(err)
    except TufKeysError as err:
        _fail_with_error(err)
    else:
        print(f"= Offline {outcome.role} key rotated. Keys saved to: {outcome.creds_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tufkeys", description="Offline TUF key management")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_rot = sub.add_parser(
        "rotate-offline-key",
        help="Stage rotation of the offline TUF signing key for the factory",
        description=(
            "Stage rotation of the offline TUF signing key for the factory. "
            "When the targets key is rotated, existing production targets are re-signed "
            "with the new key. Rotation is refused while waves are active."
        ),
    )
    p_rot.add_argument("--factory", default=os.environ.get("TUFKEYS_FACTORY"), help="Factory name")
    p_rot.add_argument(
        "--service",
        default=os.environ.get("TUFKEYS_SERVICE"),
        help="Transaction service: dir:<path> or an installed service name",
    )
    p_rot.add_argument("-r", "--role", required=True, help="TUF role name, supported: Root, Targets")
    p_rot.add_argument("-x", "--txid", required=True, help="TUF root updates transaction ID")
    p_rot.add_argument("-k", "--keys", help="Path to <tuf-root-keys.tgz> used to sign TUF root")
    p_rot.add_argument(
        "-K", "--targets-keys",
        help="Path to <tuf-targets-keys.tgz> used to sign prod TUF targets",
    )
    p_rot.add_argument(
        "-y", "--key-type",
        default=DEFAULT_KEY_TYPE,
        help="Key type, supported: Ed25519, RSA",
    )
    p_rot.add_argument(
        "-s", "--sign",
        action="store_true",
        help="Sign the new TUF root using the offline root keys",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "rotate-offline-key":
        cmd_rotate_offline_key(args)


if __name__ == "__main__":
    main()
