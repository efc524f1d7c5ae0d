"""
hrm_keys.errors
---------------
Error taxonomy for the key-management core.

Domain errors are what callers see. Crypto errors are raised by the
primitive provider and never cross the lifecycle / distributor boundary
untranslated.
"""

from __future__ import annotations
from typing import Optional


class KeyVaultError(Exception):
    pass


# --------- Domain errors ----------
class ValidationError(KeyVaultError):
    pass


class ConfigurationError(ValidationError):
    pass


class AlreadyExistsError(KeyVaultError):
    pass


class AlreadyInitializedError(KeyVaultError):
    pass


class NotFoundError(KeyVaultError):
    pass


class AuthenticationError(KeyVaultError):
    pass


class ConflictError(KeyVaultError):
    """Concurrent modification detected. Safe to retry after re-reading."""


class ParticipantKeyError(KeyVaultError):
    def __init__(self, subject_id: str, reason: Optional[str] = None):
        self.subject_id = subject_id
        msg = f"cannot wrap conversation key for participant {subject_id}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class RateLimitedError(KeyVaultError):
    pass


# --------- Primitive-level errors ----------
class CryptoError(KeyVaultError):
    pass


class InvalidKeyError(CryptoError):
    pass


class DecryptError(CryptoError):
    pass


class MalformedInputError(DecryptError):
    pass


class IntegrityError(CryptoError):
    pass


class OperationTimeoutError(CryptoError):
    pass
