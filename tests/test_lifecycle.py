# tests/test_lifecycle.py

import dataclasses
from datetime import timedelta

import pytest

from hrm_keys.constants import MASTER_KEY_AAD, PRIVATE_KEY_AAD, PRIVATE_KEY_INFO
from hrm_keys.crypto import compute_pubkey_fingerprint, load_private_key, public_key_bits, rsa_decrypt, rsa_encrypt
from hrm_keys.errors import (
    AlreadyInitializedError,
    AuthenticationError,
    ConflictError,
    IntegrityError,
    NotFoundError,
    OperationTimeoutError,
    RateLimitedError,
    ValidationError,
)
from hrm_keys.lifecycle import KeyLifecycleManager, subject_aad
from hrm_keys.ratelimit import SubjectRateLimiter
from hrm_keys.runner import DERIVATION, CryptoRunner
from hrm_keys.storage import InMemoryStorage, SubjectClass
from hrm_keys.utils import utcnow


def _record(manager, subject_id="1", subject_class=SubjectClass.EMPLOYEE):
    return manager.store.find_active(subject_id, subject_class)


def test_initialize_scenario(manager):
    public_key = manager.initialize(1, "Employee", "p1")
    assert public_key.startswith("-----BEGIN PUBLIC KEY-----")
    assert public_key_bits(public_key) == 2048

    rec = _record(manager)
    assert rec.version == 1
    assert rec.status.active and not rec.status.compromised
    assert rec.strength.value == "medium"  # 10k iterations in the test config
    assert rec.backups == ()

    with pytest.raises(AlreadyInitializedError):
        manager.initialize(1, "Employee", "p1")


def test_initialize_requires_password(manager):
    with pytest.raises(ValidationError):
        manager.initialize(1, "Employee", "")
    with pytest.raises(ValidationError):
        manager.initialize(1, "Employee", None)
    with pytest.raises(ValidationError):
        manager.initialize(1, "Contractor", "p1")
    assert _record(manager) is None


def test_subject_class_is_normalized(manager):
    manager.initialize("9", "hr", "p1")
    assert manager.get_public_key("9", "HR").version == 1
    assert manager.get_public_key("9", SubjectClass.HR).version == 1
    with pytest.raises(NotFoundError):
        manager.get_public_key("9", "Employee")


def test_password_unwraps_master_key_that_protects_private_key(manager, provider):
    public_key = manager.initialize(1, SubjectClass.EMPLOYEE, "p1")
    rec = _record(manager)
    kd = rec.key_derivation

    wrapping_key = provider.derive_key("p1", kd.salt, kd.iterations, kd.key_length)
    master_key = provider.symmetric_decrypt(
        rec.master_key_envelope.box, wrapping_key, subject_aad(MASTER_KEY_AAD, "1", SubjectClass.EMPLOYEE)
    )
    assert len(master_key) == kd.key_length

    private_key_key = provider.derive_subkey(master_key, rec.private_key_envelope.salt, PRIVATE_KEY_INFO)
    private_pem = provider.symmetric_decrypt(
        rec.private_key_envelope.box, private_key_key, subject_aad(PRIVATE_KEY_AAD, "1", SubjectClass.EMPLOYEE)
    )
    assert load_private_key(private_pem).key_size == 2048
    assert rsa_decrypt(rsa_encrypt(b"sample", public_key), private_pem) == b"sample"
    # the two salts are independent
    assert rec.private_key_envelope.salt != kd.salt


def test_rotate_twice(manager):
    first = manager.initialize(1, "Employee", "p1")

    r1 = manager.rotate(1, "Employee", "p1", "p2")
    assert r1.version == 2
    assert r1.public_key != first
    assert len(_record(manager).backups) == 1

    r2 = manager.rotate(1, "Employee", "p2", "p3")
    assert r2.version == 3
    assert r2.public_key != r1.public_key

    rec = _record(manager)
    assert rec.version == 3
    assert [b.version for b in rec.backups] == [1, 2]
    assert all(not b.is_active for b in rec.backups)
    assert rec.find_backup(1) is not None
    assert rec.find_backup() is None

    # only the newest password works now
    assert manager.verify_integrity(1, "Employee", "p3").is_valid
    assert not manager.verify_integrity(1, "Employee", "p2").is_valid


def test_rotate_keeps_previous_envelope_as_backup(manager):
    manager.initialize(1, "Employee", "p1")
    before = _record(manager)
    manager.rotate(1, "Employee", "p1", "p2")
    after = _record(manager)

    backup = after.find_backup(1)
    assert backup.master_key_envelope == before.master_key_envelope
    assert backup.private_key_envelope == before.private_key_envelope
    assert backup.public_key_fpr == compute_pubkey_fingerprint(before.public_key)
    assert backup.public_key_fpr != compute_pubkey_fingerprint(after.public_key)
    assert after.master_key_envelope != before.master_key_envelope
    assert after.key_derivation.salt != before.key_derivation.salt


def test_rotate_wrong_password_leaves_record_unchanged(manager):
    manager.initialize(1, "Employee", "p1")
    before = _record(manager)

    with pytest.raises(AuthenticationError):
        manager.rotate(1, "Employee", "wrong", "p2")

    after = _record(manager)
    assert after.version == 1
    assert after.public_key == before.public_key
    assert after.revision == before.revision
    assert [e.event_type for e in manager.store.list_events("1")][-1] == "keys.auth_failed"


def test_rotate_missing_record(manager):
    with pytest.raises(NotFoundError):
        manager.rotate(1, "Employee", "p1", "p2")
    with pytest.raises(ValidationError):
        manager.rotate(1, "Employee", "p1", "")


class _LosingStore(InMemoryStorage):
    """Simulates another writer committing between our read and our save."""

    def save(self, record):
        raise ConflictError("concurrent modification")


def test_rotate_conflict_is_atomic(config):
    store = _LosingStore()
    manager = KeyLifecycleManager(store, config)
    public_key = manager.initialize(1, "Employee", "p1")
    before = store.find_active("1", SubjectClass.EMPLOYEE)

    with pytest.raises(ConflictError):
        manager.rotate(1, "Employee", "p1", "p2")

    after = store.find_active("1", SubjectClass.EMPLOYEE)
    assert after == before
    assert after.public_key == public_key
    manager.close()


def test_stale_record_loses_race(manager):
    manager.initialize(1, "Employee", "p1")
    stale = _record(manager)
    manager.rotate(1, "Employee", "p1", "p2")
    with pytest.raises(ConflictError):
        manager.store.save(stale.evolve(version=99))


def test_mark_compromised_is_idempotent(manager):
    manager.initialize(1, "Employee", "p1")
    manager.mark_compromised(1, "Employee")
    first = manager.store.find_latest("1", SubjectClass.EMPLOYEE)
    manager.mark_compromised(1, "Employee")
    second = manager.store.find_latest("1", SubjectClass.EMPLOYEE)

    assert second.status.compromised is True
    assert second.status.active is False
    assert second.status.compromised_at == first.status.compromised_at
    assert second.revision == first.revision

    with pytest.raises(NotFoundError):
        manager.get_status(1, "Employee")
    with pytest.raises(NotFoundError):
        manager.rotate(1, "Employee", "p1", "p2")


def test_mark_compromised_unknown_subject(manager):
    with pytest.raises(NotFoundError):
        manager.mark_compromised(404, "Admin")


def test_reinitialize_after_compromise_continues_versions(manager):
    manager.initialize(1, "Employee", "p1")
    manager.rotate(1, "Employee", "p1", "p2")
    manager.mark_compromised(1, "Employee")

    manager.initialize(1, "Employee", "fresh")
    status = manager.get_status(1, "Employee")
    assert status.version == 3
    assert status.active and not status.compromised
    assert len(manager.store.list_records("1")) == 2


def test_verify_integrity(manager):
    manager.initialize(1, "Employee", "p1")
    before = _record(manager)

    ok = manager.verify_integrity(1, "Employee", "p1")
    assert ok.is_valid is True
    assert ok.version == 1
    assert ok.last_rotated_at == before.last_rotated_at

    bad = manager.verify_integrity(1, "Employee", "nope")
    assert bad.is_valid is False
    assert bad.version == 1

    assert _record(manager) == before


def test_verify_integrity_missing_record(manager):
    with pytest.raises(NotFoundError):
        manager.verify_integrity(1, "Employee", "p1")


class _StalledDerivation(CryptoRunner):
    """Every key derivation overruns its deadline."""

    def run(self, kind, fn, *args, **kwargs):
        if kind == DERIVATION:
            raise OperationTimeoutError(f"{kind} did not complete within 0s")
        return super().run(kind, fn, *args, **kwargs)


def test_verify_integrity_timeout_is_not_a_wrong_password(store, config):
    normal = KeyLifecycleManager(store, config)
    normal.initialize(1, "Employee", "p1")
    normal.close()
    slow = KeyLifecycleManager(store, config, runner=_StalledDerivation(config))

    with pytest.raises(OperationTimeoutError):
        slow.verify_integrity(1, "Employee", "p1")
    with pytest.raises(OperationTimeoutError):
        slow.rotate(1, "Employee", "p1", "p2")
    assert store.find_active("1", SubjectClass.EMPLOYEE).version == 1
    slow.close()


def test_unusable_stored_derivation_parameters(manager):
    manager.initialize(1, "Employee", "p1")
    rec = _record(manager)
    weak = dataclasses.replace(rec.master_key_envelope, kdf_iterations=1_000)
    manager.store.save(rec.evolve(master_key_envelope=weak))

    report = manager.verify_integrity(1, "Employee", "p1")
    assert report.is_valid is False
    assert report.version == 1
    with pytest.raises(IntegrityError):
        manager.rotate(1, "Employee", "p1", "p2")


def test_status_and_public_key_projections(manager):
    public_key = manager.initialize(5, "Admin", "p1")

    info = manager.get_public_key(5, "Admin")
    assert info.public_key == public_key
    assert info.to_dict() == {"public_key": public_key, "version": 1, "strength": "medium"}

    status = manager.get_status(5, "Admin").to_dict()
    assert status["version"] == 1
    assert status["active"] is True
    assert status["compromised"] is False
    assert status["rotation_due"] is False
    assert status["usage_stats"]["total_encryptions"] == 0
    for forbidden in ("master_key_envelope", "private_key_envelope", "public_key"):
        assert forbidden not in status


def test_seal_and_open_for_subject_track_usage(manager):
    manager.initialize(1, "Employee", "p1")
    box = manager.seal_for_subject(1, "Employee", "p1", b"payslip-2026-10.pdf")
    assert manager.open_for_subject(1, "Employee", "p1", box) == b"payslip-2026-10.pdf"

    usage = manager.get_status(1, "Employee").usage_stats
    assert usage["total_encryptions"] == 1
    assert usage["total_decryptions"] == 1
    assert usage["last_used_at"] is not None

    with pytest.raises(AuthenticationError):
        manager.open_for_subject(1, "Employee", "wrong", box)

    # usage counters belong to the current master key
    manager.rotate(1, "Employee", "p1", "p2")
    assert manager.get_status(1, "Employee").usage_stats["total_encryptions"] == 0


def test_rotation_due_and_backup_retention(store, config):
    now = [utcnow()]
    manager = KeyLifecycleManager(store, config, clock=lambda: now[0])
    manager.initialize(1, "Employee", "p1")
    assert manager.get_status(1, "Employee").rotation_due is False

    now[0] += timedelta(days=config.rotation_interval_days + 1)
    assert manager.get_status(1, "Employee").rotation_due is True

    manager.rotate(1, "Employee", "p1", "p2")
    assert manager.get_status(1, "Employee").rotation_due is False

    now[0] += timedelta(days=config.backup_retention_days + 1)
    manager.rotate(1, "Employee", "p2", "p3")
    # the version-1 backup aged out; the one just retired stays
    assert [b.version for b in _record(manager).backups] == [2]
    manager.close()


def test_backup_count_is_bounded(store):
    from hrm_keys.config import load_config

    cfg = load_config({"iterations": 10_000, "max_backups": 2})
    manager = KeyLifecycleManager(store, cfg)
    manager.initialize(1, "Employee", "p0")
    for i in range(3):
        manager.rotate(1, "Employee", f"p{i}", f"p{i + 1}")
    rec = _record(manager)
    assert rec.version == 4
    assert [b.version for b in rec.backups] == [2, 3]
    manager.close()


def test_password_operations_are_rate_limited(store, config):
    manager = KeyLifecycleManager(store, config, limiter=SubjectRateLimiter(2, 60.0))
    manager.initialize(1, "Employee", "p1")
    manager.verify_integrity(1, "Employee", "x")
    manager.verify_integrity(1, "Employee", "y")
    with pytest.raises(RateLimitedError):
        manager.verify_integrity(1, "Employee", "p1")
    # other subjects are unaffected
    manager.initialize(2, "Employee", "p1")
    assert manager.verify_integrity(2, "Employee", "p1").is_valid
    manager.close()


def test_bulk_initialize(manager):
    manager.initialize(1, "Employee", "p1")
    summary = manager.bulk_initialize([
        (1, "Employee", "p1"),
        (2, "HR", "p2"),
        (3, "Admin", "p3"),
        (4, "Employee", ""),
    ])
    assert summary == {"initialized": 2, "skipped": 1, "failed": 1}


def test_audit_trail_has_no_key_material(manager):
    manager.initialize(1, "Employee", "p1")
    manager.rotate(1, "Employee", "p1", "p2")
    manager.mark_compromised(1, "Employee")

    events = manager.store.list_events("1")
    assert [e.event_type for e in events] == ["keys.initialized", "keys.rotated", "keys.compromised"]
    for e in events:
        assert set(e.payload) <= {"subject_id", "subject_class", "version", "previous_version", "public_key_fpr"}


def test_passwords_never_logged(manager, caplog):
    caplog.set_level("DEBUG")
    manager.initialize(1, "Employee", "s3cret-pass")
    manager.rotate(1, "Employee", "s3cret-pass", "n3w-pass")
    manager.verify_integrity(1, "Employee", "wr0ng-pass")
    assert "s3cret-pass" not in caplog.text
    assert "n3w-pass" not in caplog.text
    assert "wr0ng-pass" not in caplog.text
    assert "integrity check failed" in caplog.text
