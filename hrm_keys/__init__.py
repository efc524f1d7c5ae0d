"""
HRM Keys Package
================
Per-user key management and envelope encryption for the HRM backend.

Provides:
- AEAD / PBKDF2 / RSA-OAEP primitives (``crypto``)
- Password-protected key records with rotation history (``storage``)
- Key lifecycle orchestration: initialize, rotate, verify, compromise (``lifecycle``)
- Conversation key fan-out to participants (``distributor``)
- Message and file content encryption (``content``)
"""

from .config import EncryptionConfig, load_config
from .content import ContentCipher, EncryptedFile
from .crypto import CryptoProvider
from .distributor import ConversationKeyDistributor, Participant
from .errors import (
    KeyVaultError,
    ValidationError,
    ConfigurationError,
    AlreadyExistsError,
    AlreadyInitializedError,
    NotFoundError,
    AuthenticationError,
    ConflictError,
    ParticipantKeyError,
    RateLimitedError,
    CryptoError,
    InvalidKeyError,
    DecryptError,
    MalformedInputError,
    IntegrityError,
    OperationTimeoutError,
)
from .lifecycle import KeyLifecycleManager
from .storage import SubjectClass, KeyRecord, load_storage_provider

__all__ = [
    "EncryptionConfig",
    "load_config",
    "ContentCipher",
    "EncryptedFile",
    "CryptoProvider",
    "ConversationKeyDistributor",
    "Participant",
    "KeyLifecycleManager",
    "SubjectClass",
    "KeyRecord",
    "load_storage_provider",
    "KeyVaultError",
    "ValidationError",
    "ConfigurationError",
    "AlreadyExistsError",
    "AlreadyInitializedError",
    "NotFoundError",
    "AuthenticationError",
    "ConflictError",
    "ParticipantKeyError",
    "RateLimitedError",
    "CryptoError",
    "InvalidKeyError",
    "DecryptError",
    "MalformedInputError",
    "IntegrityError",
    "OperationTimeoutError",
]
