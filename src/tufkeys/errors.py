"""
errors.py - tufkeys error taxonomy

Every failure during an offline key rotation maps to one of these classes.
Codes are stable so operators can grep logs and runbooks for them:

  E0xx  credential archive
  E1xx  key material and signing
  E2xx  rotation state machine
  E3xx  remote transaction service
  E4xx  caller options
"""

from pathlib import Path
from typing import Optional

__all__ = [
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
]


class TufKeysError(Exception):
    """Base class for all tufkeys errors."""
    def __init__(
        self,
        code: str,
        message: str,
        context: Optional[str] = None,
        fix: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.context = context
        self.fix = fix

        full_msg = f"[{code}] {message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)


# Credential archive errors (E0xx)
class CredsFormatError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E001",
            "The offline credentials file is not a readable gzipped tar archive of key records.",
            context,
            "pass the archive produced by a previous rotation or key export",
        )


class CredsNotWritableError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E002",
            "The offline credentials file cannot be written, so new key material would be lost.",
            context,
            "fix the file or directory permissions before generating new keys",
        )


class CredentialCommitError(TufKeysError):
    """Raised after a successful upload when the new archive could not replace the old one."""
    def __init__(self, temp_path: Path, context: Optional[str] = None):
        self.temp_path = Path(temp_path)
        super().__init__(
            "TUFKEYS_E003",
            "Unable to update the offline credentials file after the new root was uploaded.",
            context,
            f"copy {self.temp_path} over your credentials file; it holds the new private key",
        )


# Key material and signing errors (E1xx)
class UnsupportedAlgorithmError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E100",
            "The requested key type is not supported. Supported: Ed25519, RSA.",
            context,
        )


class SigningError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E101",
            "A cryptographic signing operation failed.",
            context,
        )


class KeyNotFoundError(TufKeysError):
    def __init__(self, key_id: str, context: Optional[str] = None):
        self.key_id = key_id
        super().__init__(
            "TUFKEYS_E102",
            f"No private key for key id {key_id} was found in the offline credentials.",
            context,
            "pass the credentials archive that holds this key",
        )


# Rotation state machine errors (E2xx)
class UnsupportedRoleError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E200",
            "Only the offline root and targets roles can be rotated.",
            context,
        )


class MissingOnlineKeyError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E201",
            "Unable to find the online targets key for the factory.",
            context,
        )


class RotationBlockedError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E202",
            "The TUF root updates transaction does not allow this rotation.",
            context,
        )


class RootInvariantError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E203",
            "The new TUF root violates a key or threshold invariant and would not verify.",
            context,
        )


# Remote transaction errors (E3xx)
class RemoteTransactionError(TufKeysError):
    def __init__(self, context: Optional[str] = None, temp_path: Optional[Path] = None):
        self.temp_path = Path(temp_path) if temp_path is not None else None
        fix = None
        if self.temp_path is not None:
            fix = f"new private keys were kept at {self.temp_path}; remove it only once you are sure it is unused"
        super().__init__(
            "TUFKEYS_E300",
            "The TUF root updates transaction service request failed.",
            context,
            fix,
        )


# Caller options (E4xx)
class InvalidOptionsError(TufKeysError):
    def __init__(self, context: Optional[str] = None):
        super().__init__(
            "TUFKEYS_E400",
            "The combination of rotation options is invalid.",
            context,
        )
