"""
hrm_keys.lifecycle
------------------
Key lifecycle orchestration for one subject (Admin / HR / Employee).

States per subject: uninitialized -> active (initialize), active -> active
(rotate), active -> compromised (mark_compromised). Compromised is terminal
for a record; a fresh record may be initialized afterwards and continues
the subject's version sequence.

Key hierarchy for a record:

    password --PBKDF2--> wrapping key --AEAD--> master key
    master key --HKDF(salt2)--> private-key key --AEAD--> RSA private key
    RSA public key (plaintext, published)

Proof of knowledge of the password is successful AEAD decryption of the
master key envelope; there is no separate password hash. Every state change
is built as a new immutable ``KeyRecord`` and committed through a single
``store.save()`` call.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from .config import EncryptionConfig
from .constants import (
    INTEGRITY_TEST_STRING,
    KDF_ALGORITHM,
    MASTER_KEY_AAD,
    PRIVATE_KEY_AAD,
    PRIVATE_KEY_INFO,
    SUBJECT_CONTENT_AAD,
)
from .crypto import CryptoProvider, compute_pubkey_fingerprint
from .envelope import KeyDerivation, MasterKeyEnvelope, PrivateKeyEnvelope, SealedBox
from .errors import (
    AlreadyExistsError,
    AlreadyInitializedError,
    AuthenticationError,
    ConflictError,
    CryptoError,
    IntegrityError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from .logger import get_logger
from .ratelimit import SubjectRateLimiter
from .runner import DECRYPTION, DERIVATION, ENCRYPTION, CryptoRunner
from .storage.models import (
    BackupEntry,
    KeyRecord,
    KeyStatus,
    SubjectClass,
    UsageStats,
    classify_strength,
)
from .storage.provider import StorageProvider
from .utils import b64d, from_iso, to_iso, utcnow

log = get_logger("HRM.Keys.Lifecycle")

SubjectClassLike = Union[SubjectClass, str]


@dataclass(frozen=True)
class RotationResult:
    public_key: str
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {"public_key": self.public_key, "version": self.version}


@dataclass(frozen=True)
class IntegrityReport:
    is_valid: bool
    version: int
    last_rotated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"is_valid": self.is_valid, "version": self.version, "last_rotated_at": self.last_rotated_at}


@dataclass(frozen=True)
class PublicKeyInfo:
    public_key: str
    version: int
    strength: str

    def to_dict(self) -> Dict[str, Any]:
        return {"public_key": self.public_key, "version": self.version, "strength": self.strength}


@dataclass(frozen=True)
class KeyStatusView:
    version: int
    strength: str
    active: bool
    compromised: bool
    last_rotated_at: str
    usage_stats: Dict[str, Any]
    rotation_due: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "strength": self.strength,
            "active": self.active,
            "compromised": self.compromised,
            "last_rotated_at": self.last_rotated_at,
            "usage_stats": self.usage_stats,
            "rotation_due": self.rotation_due,
        }


@dataclass(frozen=True)
class _Material:
    master_key_envelope: MasterKeyEnvelope
    private_key_envelope: PrivateKeyEnvelope
    public_key: str
    key_derivation: KeyDerivation


def subject_aad(label: bytes, subject_id: str, subject_class: SubjectClass) -> bytes:
    # Binds an envelope to its owner so envelopes cannot be swapped between records
    return b"|".join([label, subject_class.value.encode("utf-8"), subject_id.encode("utf-8")])


class KeyLifecycleManager:
    def __init__(
        self,
        store: StorageProvider,
        config: Optional[EncryptionConfig] = None,
        provider: Optional[CryptoProvider] = None,
        runner: Optional[CryptoRunner] = None,
        limiter: Optional[SubjectRateLimiter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or (provider.config if provider else EncryptionConfig())
        self.crypto = provider or CryptoProvider(self.config)
        self.runner = runner or CryptoRunner(self.config)
        self.limiter = limiter or SubjectRateLimiter(self.config.rate_limit_max, self.config.rate_limit_window)
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _now(self) -> str:
        return to_iso(self._clock())

    def _log_op(self, msg: str) -> None:
        if self.config.log_key_operations:
            log.info(msg)
        else:
            log.debug(msg)

    @staticmethod
    def _subject(subject_id: Any, subject_class: SubjectClassLike) -> Tuple[str, SubjectClass]:
        if subject_id is None or str(subject_id).strip() == "":
            raise ValidationError("subject id is required")
        return str(subject_id), SubjectClass.parse(subject_class)

    @staticmethod
    def _require_password(password: Any, name: str = "password") -> str:
        if not isinstance(password, str) or password == "":
            raise ValidationError(f"{name} is required")
        return password

    def _load_active(self, subject_id: str, subject_class: SubjectClass) -> KeyRecord:
        record = self.store.find_active(subject_id, subject_class)
        if record is None:
            raise NotFoundError(f"no active key record for {subject_class.value}:{subject_id}")
        return record

    def _throttle(self, subject_id: str, subject_class: SubjectClass) -> None:
        self.limiter.check(f"{subject_class.value}:{subject_id}")

    def _generate_material(self, subject_id: str, subject_class: SubjectClass, password: str) -> _Material:
        iterations = self.config.iterations
        master_key = self.crypto.generate_symmetric_key()
        salt = self.crypto.generate_salt()
        wrapping_key = self.runner.run(DERIVATION, self.crypto.derive_key, password, salt, iterations)
        master_box = self.runner.run(
            ENCRYPTION, self.crypto.symmetric_encrypt,
            master_key, wrapping_key, subject_aad(MASTER_KEY_AAD, subject_id, subject_class),
        )

        public_pem, private_pem = self.runner.run(ENCRYPTION, self.crypto.generate_key_pair)
        private_salt = self.crypto.generate_salt()
        private_key_key = self.crypto.derive_subkey(master_key, private_salt, PRIVATE_KEY_INFO)
        private_box = self.runner.run(
            ENCRYPTION, self.crypto.symmetric_encrypt,
            private_pem, private_key_key, subject_aad(PRIVATE_KEY_AAD, subject_id, subject_class),
        )

        return _Material(
            master_key_envelope=MasterKeyEnvelope.seal(master_box, salt, iterations),
            private_key_envelope=PrivateKeyEnvelope.seal(private_box, private_salt),
            public_key=public_pem,
            key_derivation=KeyDerivation(
                salt=salt,
                algorithm=KDF_ALGORITHM,
                iterations=iterations,
                key_length=self.config.key_length,
            ),
        )

    def _unwrap_master_key(self, record: KeyRecord, password: str) -> bytes:
        env = record.master_key_envelope
        kd = record.key_derivation
        try:
            wrapping_key = self.runner.run(
                DERIVATION, self.crypto.derive_key, password, env.salt, env.kdf_iterations, kd.key_length,
            )
            return self.runner.run(
                DECRYPTION, self.crypto.symmetric_decrypt,
                env.box, wrapping_key, subject_aad(MASTER_KEY_AAD, record.subject_id, record.subject_class),
            )
        except OperationTimeoutError:
            raise
        except CryptoError as e:
            raise AuthenticationError("password does not unlock the master key") from e
        except ValidationError as e:
            # Stored derivation parameters below the floor can never be unlocked
            raise IntegrityError(f"master key envelope has unusable derivation parameters: {e}") from e

    def _unwrap_private_key(self, record: KeyRecord, master_key: bytes) -> bytes:
        env = record.private_key_envelope
        try:
            private_key_key = self.crypto.derive_subkey(master_key, env.salt, PRIVATE_KEY_INFO)
            return self.runner.run(
                DECRYPTION, self.crypto.symmetric_decrypt,
                env.box, private_key_key, subject_aad(PRIVATE_KEY_AAD, record.subject_id, record.subject_class),
            )
        except OperationTimeoutError:
            raise
        except CryptoError as e:
            raise IntegrityError("private key envelope failed verification") from e

    def _unlock(self, subject_id: str, subject_class: SubjectClass, password: str) -> Tuple[KeyRecord, bytes]:
        record = self._load_active(subject_id, subject_class)
        try:
            return record, self._unwrap_master_key(record, password)
        except AuthenticationError:
            self._auth_failed(record)
            raise

    def _auth_failed(self, record: KeyRecord) -> None:
        log.warning(f"[KEYS] password verification failed for {record.subject_class.value}:{record.subject_id}")
        self.store.log_event("keys.auth_failed", {
            "subject_id": record.subject_id,
            "subject_class": record.subject_class.value,
            "version": record.version,
        })

    def _retain_backups(self, backups: Tuple[BackupEntry, ...], now: datetime) -> Tuple[BackupEntry, ...]:
        cutoff = now - timedelta(days=self.config.backup_retention_days)
        kept = tuple(b for b in backups if from_iso(b.created_at) >= cutoff)
        return kept[-self.config.max_backups:]

    def _record_usage(self, record: KeyRecord, encryptions: int = 0, decryptions: int = 0) -> None:
        # Advisory telemetry: losing a race here must not fail the caller's operation
        try:
            self.store.save(record.evolve(usage=record.usage.bump(encryptions, decryptions)))
        except ConflictError:
            log.warning(f"[KEYS] usage update skipped for {record.subject_class.value}:{record.subject_id} (concurrent change)")

    def rotation_due(self, record: KeyRecord) -> bool:
        now = self._clock()
        rotated = from_iso(record.last_rotated_at)
        created = from_iso(record.created_at)
        return (
            now - rotated >= timedelta(days=self.config.rotation_interval_days)
            or now - created >= timedelta(days=self.config.max_key_age_days)
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def initialize(self, subject_id: Any, subject_class: SubjectClassLike, password: str) -> str:
        """Create the subject's key record. Returns the public key PEM only."""
        subject_id, subject_class = self._subject(subject_id, subject_class)
        password = self._require_password(password)

        if self.store.find_active(subject_id, subject_class) is not None:
            raise AlreadyInitializedError(f"keys already initialized for {subject_class.value}:{subject_id}")

        # A compromised predecessor keeps its versions; never reuse them
        previous = self.store.find_latest(subject_id, subject_class)
        version = previous.version + 1 if previous is not None else 1

        material = self._generate_material(subject_id, subject_class, password)
        now = self._now()
        record = KeyRecord(
            subject_id=subject_id,
            subject_class=subject_class,
            master_key_envelope=material.master_key_envelope,
            private_key_envelope=material.private_key_envelope,
            public_key=material.public_key,
            key_derivation=material.key_derivation,
            version=version,
            last_rotated_at=now,
            status=KeyStatus(active=True, compromised=False),
            strength=classify_strength(self.config.key_length, self.config.iterations, self.config.rsa_key_size),
        )
        try:
            stored = self.store.create(record)
        except AlreadyExistsError as e:
            raise AlreadyInitializedError(f"keys already initialized for {subject_class.value}:{subject_id}") from e

        self.store.log_event("keys.initialized", {
            "subject_id": subject_id,
            "subject_class": subject_class.value,
            "version": stored.version,
            "public_key_fpr": compute_pubkey_fingerprint(stored.public_key),
        })
        self._log_op(f"[KEYS] initialized {subject_class.value}:{subject_id} version={stored.version}")
        return stored.public_key

    def rotate(self, subject_id: Any, subject_class: SubjectClassLike, current_password: str, new_password: str) -> RotationResult:
        """
        Replace master key, key pair and password protection in one commit.

        The pre-rotation envelopes move to ``backups``. Nothing is persisted
        unless the current password unlocks the existing master key.
        """
        subject_id, subject_class = self._subject(subject_id, subject_class)
        current_password = self._require_password(current_password, "current password")
        new_password = self._require_password(new_password, "new password")
        self._throttle(subject_id, subject_class)

        record, _ = self._unlock(subject_id, subject_class, current_password)

        material = self._generate_material(subject_id, subject_class, new_password)
        now_dt = self._clock()
        now = to_iso(now_dt)
        retired = BackupEntry(
            version=record.version,
            master_key_envelope=record.master_key_envelope,
            private_key_envelope=record.private_key_envelope,
            public_key_fpr=compute_pubkey_fingerprint(record.public_key),
            created_at=now,
            is_active=False,
        )
        rotated = record.evolve(
            master_key_envelope=material.master_key_envelope,
            private_key_envelope=material.private_key_envelope,
            public_key=material.public_key,
            key_derivation=material.key_derivation,
            version=record.version + 1,
            last_rotated_at=now,
            backups=self._retain_backups(record.backups + (retired,), now_dt),
            usage=UsageStats(),
            strength=classify_strength(self.config.key_length, self.config.iterations, self.config.rsa_key_size),
        )
        stored = self.store.save(rotated)

        self.store.log_event("keys.rotated", {
            "subject_id": subject_id,
            "subject_class": subject_class.value,
            "version": stored.version,
            "previous_version": record.version,
        })
        self._log_op(f"[KEYS] rotated {subject_class.value}:{subject_id} version={record.version}->{stored.version}")
        return RotationResult(public_key=stored.public_key, version=stored.version)

    def mark_compromised(self, subject_id: Any, subject_class: SubjectClassLike) -> None:
        """Terminal transition. Repeating it on a compromised record is a no-op."""
        subject_id, subject_class = self._subject(subject_id, subject_class)
        record = self.store.find_active(subject_id, subject_class) or self.store.find_latest(subject_id, subject_class)
        if record is None:
            raise NotFoundError(f"no key record for {subject_class.value}:{subject_id}")
        if record.status.compromised:
            log.debug(f"[KEYS] {subject_class.value}:{subject_id} already compromised")
            return

        stored = self.store.save(record.evolve(
            status=KeyStatus(active=False, compromised=True, compromised_at=self._now()),
        ))
        self.store.log_event("keys.compromised", {
            "subject_id": subject_id,
            "subject_class": subject_class.value,
            "version": stored.version,
        })
        log.warning(f"[KEYS] {subject_class.value}:{subject_id} marked compromised at version={stored.version}")

    def verify_integrity(self, subject_id: Any, subject_class: SubjectClassLike, password: str) -> IntegrityReport:
        """
        Check that ``password`` unlocks the master key and the key round-trips.

        A wrong password is a negative report, not an error. Read-only.
        """
        subject_id, subject_class = self._subject(subject_id, subject_class)
        password = self._require_password(password)
        self._throttle(subject_id, subject_class)
        record = self._load_active(subject_id, subject_class)

        try:
            master_key = self._unwrap_master_key(record, password)
            box = self.runner.run(ENCRYPTION, self.crypto.symmetric_encrypt, INTEGRITY_TEST_STRING.encode("utf-8"), master_key)
            roundtrip = self.runner.run(DECRYPTION, self.crypto.symmetric_decrypt, box, master_key)
            is_valid = roundtrip.decode("utf-8") == INTEGRITY_TEST_STRING
        except OperationTimeoutError:
            raise
        except (AuthenticationError, CryptoError) as e:
            log.warning(f"[KEYS] integrity check failed for {subject_class.value}:{subject_id}: {type(e).__name__}")
            is_valid = False

        return IntegrityReport(is_valid=is_valid, version=record.version, last_rotated_at=record.last_rotated_at)

    def get_public_key(self, subject_id: Any, subject_class: SubjectClassLike) -> PublicKeyInfo:
        subject_id, subject_class = self._subject(subject_id, subject_class)
        record = self._load_active(subject_id, subject_class)
        return PublicKeyInfo(public_key=record.public_key, version=record.version, strength=record.strength.value)

    def get_status(self, subject_id: Any, subject_class: SubjectClassLike) -> KeyStatusView:
        subject_id, subject_class = self._subject(subject_id, subject_class)
        record = self._load_active(subject_id, subject_class)
        return KeyStatusView(
            version=record.version,
            strength=record.strength.value,
            active=record.status.active,
            compromised=record.status.compromised,
            last_rotated_at=record.last_rotated_at,
            usage_stats=record.usage.to_dict(),
            rotation_due=self.rotation_due(record),
        )

    # ------------------------------------------------------------------
    # Using the subject's keys
    # ------------------------------------------------------------------
    def open_wrapped_key(self, subject_id: Any, subject_class: SubjectClassLike, password: str, wrapped_key: Union[bytes, str]) -> bytes:
        """
        Recover a symmetric key that was wrapped under the subject's public key.

        The private key is unlocked and used inside this call only.
        """
        subject_id, subject_class = self._subject(subject_id, subject_class)
        password = self._require_password(password)
        if isinstance(wrapped_key, str):
            wrapped_key = b64d(wrapped_key)
        self._throttle(subject_id, subject_class)

        record, master_key = self._unlock(subject_id, subject_class, password)
        private_pem = self._unwrap_private_key(record, master_key)
        try:
            key = self.runner.run(DECRYPTION, self.crypto.asymmetric_decrypt, wrapped_key, private_pem)
        except OperationTimeoutError:
            raise
        except CryptoError as e:
            raise IntegrityError(
                f"wrapped key was not produced for the current key of {subject_class.value}:{subject_id}"
            ) from e

        self._record_usage(record, decryptions=1)
        return key

    def seal_for_subject(self, subject_id: Any, subject_class: SubjectClassLike, password: str, plaintext: bytes) -> SealedBox:
        """Encrypt personal content (e.g. a payslip) under the subject's current master key."""
        subject_id, subject_class = self._subject(subject_id, subject_class)
        password = self._require_password(password)
        self._throttle(subject_id, subject_class)

        record, master_key = self._unlock(subject_id, subject_class, password)
        box = self.runner.run(
            ENCRYPTION, self.crypto.symmetric_encrypt,
            plaintext, master_key, subject_aad(SUBJECT_CONTENT_AAD, subject_id, subject_class),
        )
        self._record_usage(record, encryptions=1)
        return box

    def open_for_subject(self, subject_id: Any, subject_class: SubjectClassLike, password: str, box: SealedBox) -> bytes:
        subject_id, subject_class = self._subject(subject_id, subject_class)
        password = self._require_password(password)
        self._throttle(subject_id, subject_class)

        record, master_key = self._unlock(subject_id, subject_class, password)
        plaintext = self.runner.run(
            DECRYPTION, self.crypto.symmetric_decrypt,
            box, master_key, subject_aad(SUBJECT_CONTENT_AAD, subject_id, subject_class),
        )
        self._record_usage(record, decryptions=1)
        return plaintext

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------
    def bulk_initialize(self, entries: Iterable[Tuple[Any, SubjectClassLike, str]]) -> Dict[str, int]:
        """Initialize many subjects; already-initialized subjects are skipped."""
        summary = {"initialized": 0, "skipped": 0, "failed": 0}
        for subject_id, subject_class, password in entries:
            try:
                self.initialize(subject_id, subject_class, password)
                summary["initialized"] += 1
            except AlreadyInitializedError:
                summary["skipped"] += 1
            except (ValidationError, CryptoError) as e:
                log.error(f"[KEYS] bulk initialize failed for {subject_class}:{subject_id}: {e}")
                summary["failed"] += 1
        log.info(f"[KEYS] bulk initialize summary {summary}")
        return summary

    def close(self) -> None:
        self.runner.close()
