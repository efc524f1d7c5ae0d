# hrm_keys/storage/models.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from hrm_keys.envelope import KeyDerivation, MasterKeyEnvelope, PrivateKeyEnvelope
from hrm_keys.errors import ValidationError
from hrm_keys.utils import now_ts


class SubjectClass(str, Enum):
    ADMIN = "Admin"
    HR = "HR"
    EMPLOYEE = "Employee"

    @classmethod
    def parse(cls, value: Any) -> "SubjectClass":
        """Accepts enum members or role strings in any case ("hr", "EMPLOYEE", ...)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        raise ValidationError(f"unknown subject class: {value!r}")


class KeyStrength(str, Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"
    VERY_STRONG = "very-strong"


def classify_strength(key_length: int, iterations: int, rsa_bits: int) -> KeyStrength:
    """Informational label derived from key-generation parameters."""
    if key_length < 16 or rsa_bits < 2048 or iterations < 10_000:
        return KeyStrength.WEAK
    if key_length < 32 or iterations < 100_000:
        return KeyStrength.MEDIUM
    if rsa_bits >= 3072 and iterations >= 310_000:
        return KeyStrength.VERY_STRONG
    return KeyStrength.STRONG


@dataclass(frozen=True)
class KeyStatus:
    active: bool = True
    compromised: bool = False
    compromised_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"active": self.active, "compromised": self.compromised, "compromised_at": self.compromised_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyStatus":
        return cls(
            active=bool(data.get("active", True)),
            compromised=bool(data.get("compromised", False)),
            compromised_at=data.get("compromised_at"),
        )


@dataclass(frozen=True)
class UsageStats:
    total_encryptions: int = 0
    total_decryptions: int = 0
    last_used_at: Optional[str] = None

    def bump(self, encryptions: int = 0, decryptions: int = 0) -> "UsageStats":
        return UsageStats(
            total_encryptions=self.total_encryptions + encryptions,
            total_decryptions=self.total_decryptions + decryptions,
            last_used_at=now_ts(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_encryptions": self.total_encryptions,
            "total_decryptions": self.total_decryptions,
            "last_used_at": self.last_used_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageStats":
        return cls(
            total_encryptions=int(data.get("total_encryptions", 0)),
            total_decryptions=int(data.get("total_decryptions", 0)),
            last_used_at=data.get("last_used_at"),
        )


@dataclass(frozen=True)
class BackupEntry:
    """
    A retired master key, kept as recovery material after rotation.

    ``is_active`` is a lookup flag on the entry itself and is always False
    for entries written by rotation. It says nothing about the owning
    record's status.
    """
    version: int
    master_key_envelope: MasterKeyEnvelope
    private_key_envelope: Optional[PrivateKeyEnvelope]
    public_key_fpr: str
    created_at: str = field(default_factory=now_ts)
    is_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "master_key_envelope": self.master_key_envelope.to_dict(),
            "private_key_envelope": self.private_key_envelope.to_dict() if self.private_key_envelope else None,
            "public_key_fpr": self.public_key_fpr,
            "created_at": self.created_at,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupEntry":
        pke = data.get("private_key_envelope")
        return cls(
            version=int(data["version"]),
            master_key_envelope=MasterKeyEnvelope.from_dict(data["master_key_envelope"]),
            private_key_envelope=PrivateKeyEnvelope.from_dict(pke) if pke else None,
            public_key_fpr=data.get("public_key_fpr", ""),
            created_at=data.get("created_at") or now_ts(),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass(frozen=True)
class KeyRecord:
    """
    Storage-level representation of one subject's key material.

    Immutable: lifecycle operations build a new value with ``evolve()`` and
    hand it to the store's ``save()``. ``revision`` is owned by the store and
    drives optimistic concurrency; ``version`` is the key version and only
    changes on rotation.
    """
    subject_id: str
    subject_class: SubjectClass
    master_key_envelope: MasterKeyEnvelope
    private_key_envelope: PrivateKeyEnvelope
    public_key: str
    key_derivation: KeyDerivation
    record_id: str = ""
    version: int = 1
    last_rotated_at: str = field(default_factory=now_ts)
    status: KeyStatus = field(default_factory=KeyStatus)
    strength: KeyStrength = KeyStrength.STRONG
    backups: Tuple[BackupEntry, ...] = ()
    usage: UsageStats = field(default_factory=UsageStats)
    created_at: str = field(default_factory=now_ts)
    updated_at: str = field(default_factory=now_ts)
    revision: int = 0

    @property
    def is_valid(self) -> bool:
        return self.status.active and not self.status.compromised

    def evolve(self, **changes: Any) -> "KeyRecord":
        return replace(self, **changes)

    def find_backup(self, version: Optional[int] = None) -> Optional[BackupEntry]:
        if version is None:
            return next((b for b in reversed(self.backups) if b.is_active), None)
        return next((b for b in self.backups if b.version == version), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "subject_id": self.subject_id,
            "subject_class": self.subject_class.value,
            "master_key_envelope": self.master_key_envelope.to_dict(),
            "private_key_envelope": self.private_key_envelope.to_dict(),
            "public_key": self.public_key,
            "key_derivation": self.key_derivation.to_dict(),
            "version": self.version,
            "last_rotated_at": self.last_rotated_at,
            "status": self.status.to_dict(),
            "strength": self.strength.value,
            "backups": [b.to_dict() for b in self.backups],
            "usage": self.usage.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyRecord":
        return cls(
            record_id=data.get("record_id", ""),
            subject_id=str(data["subject_id"]),
            subject_class=SubjectClass.parse(data["subject_class"]),
            master_key_envelope=MasterKeyEnvelope.from_dict(data["master_key_envelope"]),
            private_key_envelope=PrivateKeyEnvelope.from_dict(data["private_key_envelope"]),
            public_key=data["public_key"],
            key_derivation=KeyDerivation.from_dict(data["key_derivation"]),
            version=int(data.get("version", 1)),
            last_rotated_at=data.get("last_rotated_at") or now_ts(),
            status=KeyStatus.from_dict(data.get("status", {})),
            strength=KeyStrength(data.get("strength", KeyStrength.STRONG.value)),
            backups=tuple(BackupEntry.from_dict(b) for b in data.get("backups", [])),
            usage=UsageStats.from_dict(data.get("usage", {})),
            created_at=data.get("created_at") or now_ts(),
            updated_at=data.get("updated_at") or now_ts(),
            revision=int(data.get("revision", 0)),
        )


@dataclass(frozen=True)
class AuditEvent:
    ts: str
    event_type: str
    payload: Dict[str, Any]
