# tests/helpers.py
from hrm_keys.envelope import KeyDerivation, MasterKeyEnvelope, PrivateKeyEnvelope, SealedBox
from hrm_keys.storage import KeyRecord, SubjectClass


def make_record(subject_id="1", subject_class=SubjectClass.EMPLOYEE, **changes) -> KeyRecord:
    """A structurally valid record with dummy key material, for store-level tests."""
    box = SealedBox(b"c" * 32, b"i" * 12, b"t" * 16, "aes-256-gcm")
    rec = KeyRecord(
        subject_id=subject_id,
        subject_class=subject_class,
        master_key_envelope=MasterKeyEnvelope.seal(box, b"s" * 32, 10_000),
        private_key_envelope=PrivateKeyEnvelope.seal(box, b"p" * 32),
        public_key="-----BEGIN PUBLIC KEY-----\nabcd\n-----END PUBLIC KEY-----\n",
        key_derivation=KeyDerivation(salt=b"s" * 32, iterations=10_000),
    )
    return rec.evolve(**changes) if changes else rec
