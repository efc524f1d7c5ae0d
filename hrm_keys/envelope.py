"""
hrm_keys.envelope
-----------------
Value types for sealed key material.

- SealedBox: output of one AEAD encryption (ciphertext, iv, tag, algorithm)
- MasterKeyEnvelope: the subject's master key sealed under a password-derived key
- PrivateKeyEnvelope: the subject's RSA private key sealed under a master-key-derived key
- KeyDerivation: the PBKDF2 parameters recorded alongside a master key envelope

All types are immutable and serialize to plain JSON-safe dicts (bytes as
base64) so storage providers never need to know their structure.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict

from .constants import DEFAULT_ITERATIONS, DEFAULT_KEY_LENGTH, KDF_ALGORITHM
from .errors import MalformedInputError
from .utils import b64d, b64e


def _require(data: Dict[str, Any], *names: str) -> None:
    if not isinstance(data, dict):
        raise MalformedInputError(f"expected a mapping, got {type(data).__name__}")
    missing = [n for n in names if n not in data]
    if missing:
        raise MalformedInputError(f"missing envelope field(s): {', '.join(missing)}")


@dataclass(frozen=True)
class SealedBox:
    ciphertext: bytes
    iv: bytes
    tag: bytes
    algorithm: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": b64e(self.ciphertext),
            "iv": b64e(self.iv),
            "tag": b64e(self.tag),
            "algorithm": self.algorithm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SealedBox":
        _require(data, "ciphertext", "iv", "tag", "algorithm")
        return cls(
            ciphertext=b64d(data["ciphertext"]),
            iv=b64d(data["iv"]),
            tag=b64d(data["tag"]),
            algorithm=data["algorithm"],
        )


@dataclass(frozen=True)
class MasterKeyEnvelope:
    ciphertext: bytes
    iv: bytes
    tag: bytes
    salt: bytes
    algorithm: str
    kdf_iterations: int

    @classmethod
    def seal(cls, box: SealedBox, salt: bytes, kdf_iterations: int) -> "MasterKeyEnvelope":
        return cls(box.ciphertext, box.iv, box.tag, salt, box.algorithm, kdf_iterations)

    @property
    def box(self) -> SealedBox:
        return SealedBox(self.ciphertext, self.iv, self.tag, self.algorithm)

    def to_dict(self) -> Dict[str, Any]:
        d = self.box.to_dict()
        d["salt"] = b64e(self.salt)
        d["kdf_iterations"] = self.kdf_iterations
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MasterKeyEnvelope":
        _require(data, "salt", "kdf_iterations")
        return cls.seal(SealedBox.from_dict(data), b64d(data["salt"]), int(data["kdf_iterations"]))


@dataclass(frozen=True)
class PrivateKeyEnvelope:
    ciphertext: bytes
    iv: bytes
    tag: bytes
    salt: bytes
    algorithm: str

    @classmethod
    def seal(cls, box: SealedBox, salt: bytes) -> "PrivateKeyEnvelope":
        return cls(box.ciphertext, box.iv, box.tag, salt, box.algorithm)

    @property
    def box(self) -> SealedBox:
        return SealedBox(self.ciphertext, self.iv, self.tag, self.algorithm)

    def to_dict(self) -> Dict[str, Any]:
        d = self.box.to_dict()
        d["salt"] = b64e(self.salt)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrivateKeyEnvelope":
        _require(data, "salt")
        return cls.seal(SealedBox.from_dict(data), b64d(data["salt"]))


@dataclass(frozen=True)
class KeyDerivation:
    salt: bytes
    algorithm: str = KDF_ALGORITHM
    iterations: int = DEFAULT_ITERATIONS
    key_length: int = DEFAULT_KEY_LENGTH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "salt": b64e(self.salt),
            "iterations": self.iterations,
            "key_length": self.key_length,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyDerivation":
        _require(data, "salt")
        return cls(
            salt=b64d(data["salt"]),
            algorithm=data.get("algorithm", KDF_ALGORITHM),
            iterations=int(data.get("iterations", DEFAULT_ITERATIONS)),
            key_length=int(data.get("key_length", DEFAULT_KEY_LENGTH)),
        )
