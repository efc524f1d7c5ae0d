"""
hrm_keys.config
---------------
Startup configuration for the key-management core.

Resolution order for every option: explicit ``overrides`` dict, then the
environment variable, then the built-in default. The resulting
``EncryptionConfig`` is frozen and validated once at construction; an
invalid value raises ``ConfigurationError`` so a misconfigured process
fails at boot instead of at its first key operation.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple
import os

from .constants import (
    AES_GCM,
    AEAD_ALGORITHMS,
    CHACHA20_POLY1305,
    DEFAULT_ALGORITHM,
    DEFAULT_ALLOWED_FILE_TYPES,
    DEFAULT_ITERATIONS,
    DEFAULT_IV_LENGTH,
    DEFAULT_KEY_LENGTH,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_RSA_KEY_SIZE,
    DEFAULT_SALT_LENGTH,
    DEFAULT_TAG_LENGTH,
    MIN_ITERATIONS,
)
from .errors import ConfigurationError


@dataclass(frozen=True)
class EncryptionConfig:
    algorithm: str = DEFAULT_ALGORITHM
    key_length: int = DEFAULT_KEY_LENGTH
    iv_length: int = DEFAULT_IV_LENGTH
    tag_length: int = DEFAULT_TAG_LENGTH
    salt_length: int = DEFAULT_SALT_LENGTH
    iterations: int = DEFAULT_ITERATIONS
    rsa_key_size: int = DEFAULT_RSA_KEY_SIZE

    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_file_types: Tuple[str, ...] = DEFAULT_ALLOWED_FILE_TYPES

    # seconds; 0 disables the bound
    encryption_timeout: float = 30.0
    decryption_timeout: float = 30.0
    key_derivation_timeout: float = 5.0
    worker_pool_size: int = 4

    max_backups: int = 20
    backup_retention_days: int = 90
    rotation_interval_days: int = 30
    max_key_age_days: int = 365

    rate_limit_max: int = 100
    rate_limit_window: float = 60.0

    log_key_operations: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.algorithm not in AEAD_ALGORITHMS:
            raise ConfigurationError(
                f"algorithm must be an AEAD cipher ({', '.join(AEAD_ALGORITHMS)}), got {self.algorithm!r}"
            )
        if self.key_length < 16:
            raise ConfigurationError("Key length must be at least 16 bytes")
        if self.algorithm == AES_GCM and self.key_length not in (16, 24, 32):
            raise ConfigurationError("AES-GCM key length must be 16, 24 or 32 bytes")
        if self.algorithm == CHACHA20_POLY1305 and self.key_length != 32:
            raise ConfigurationError("ChaCha20-Poly1305 key length must be 32 bytes")

        if self.algorithm == CHACHA20_POLY1305 and self.iv_length != 12:
            raise ConfigurationError("ChaCha20-Poly1305 nonce length must be 12 bytes")
        if not 12 <= self.iv_length <= 64:
            raise ConfigurationError("IV length must be between 12 and 64 bytes")
        if self.tag_length != 16:
            raise ConfigurationError("Only full 16-byte authentication tags are supported")

        if self.salt_length < 16:
            raise ConfigurationError("Salt length must be at least 16 bytes")
        if self.iterations < MIN_ITERATIONS:
            raise ConfigurationError(f"Iterations must be at least {MIN_ITERATIONS}")
        if self.rsa_key_size < 2048:
            raise ConfigurationError("RSA key size must be at least 2048 bits")

        if self.max_file_size <= 0:
            raise ConfigurationError("max_file_size must be positive")
        if not self.allowed_file_types:
            raise ConfigurationError("allowed_file_types must not be empty")

        for name in ("encryption_timeout", "decryption_timeout", "key_derivation_timeout"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")
        if self.worker_pool_size < 1:
            raise ConfigurationError("worker_pool_size must be >= 1")

        for name in ("max_backups", "backup_retention_days", "rotation_interval_days", "max_key_age_days", "rate_limit_max"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        if self.rate_limit_window <= 0:
            raise ConfigurationError("rate_limit_window must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# option name -> environment variable
ENV_VARS: Dict[str, str] = {
    "algorithm": "ENCRYPTION_ALGORITHM",
    "key_length": "ENCRYPTION_KEY_LENGTH",
    "iv_length": "ENCRYPTION_IV_LENGTH",
    "tag_length": "ENCRYPTION_TAG_LENGTH",
    "salt_length": "ENCRYPTION_SALT_LENGTH",
    "iterations": "ENCRYPTION_ITERATIONS",
    "rsa_key_size": "ENCRYPTION_RSA_KEY_SIZE",
    "max_file_size": "MAX_FILE_SIZE",
    "allowed_file_types": "ALLOWED_FILE_TYPES",
    "encryption_timeout": "ENCRYPTION_TIMEOUT",
    "decryption_timeout": "DECRYPTION_TIMEOUT",
    "key_derivation_timeout": "KEY_DERIVATION_TIMEOUT",
    "worker_pool_size": "ENCRYPTION_WORKERS",
    "max_backups": "KEY_BACKUP_LIMIT",
    "backup_retention_days": "KEY_BACKUP_RETENTION_DAYS",
    "rotation_interval_days": "KEY_ROTATION_INTERVAL_DAYS",
    "max_key_age_days": "MAX_KEY_AGE_DAYS",
    "rate_limit_max": "KEY_RATE_LIMIT_MAX",
    "rate_limit_window": "KEY_RATE_LIMIT_WINDOW",
    "log_key_operations": "LOG_KEY_OPERATIONS",
}


def _coerce(name: str, raw: Any, default: Any) -> Any:
    if name == "allowed_file_types":
        if isinstance(raw, str):
            return tuple(t.strip() for t in raw.split(",") if t.strip())
        return tuple(raw)
    if isinstance(default, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        return bool(raw)
    try:
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid value for {name}: {raw!r}") from e
    return str(raw).strip().lower() if name == "algorithm" else raw


def load_config(overrides: Optional[Dict[str, Any]] = None) -> EncryptionConfig:
    """
    Build an ``EncryptionConfig`` from overrides + environment.

    Unknown override keys are rejected so typos do not silently fall back
    to defaults.
    """
    overrides = overrides or {}
    unknown = set(overrides) - set(ENV_VARS)
    if unknown:
        raise ConfigurationError(f"unknown configuration option(s): {', '.join(sorted(unknown))}")

    defaults = EncryptionConfig()
    values: Dict[str, Any] = {}
    for name, env_var in ENV_VARS.items():
        default = getattr(defaults, name)
        if name in overrides:
            raw = overrides[name]
        else:
            raw = os.getenv(env_var)
            if raw is None or raw == "":
                continue
        values[name] = _coerce(name, raw, default)

    return EncryptionConfig(**values)
