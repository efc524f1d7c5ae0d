"""
hrm_keys.crypto
---------------
Primitive provider for the key-management core:

- PBKDF2-HMAC-SHA256: password -> key derivation
- HKDF-SHA256: master key -> private-key wrapping key
- AES-GCM / ChaCha20-Poly1305: authenticated symmetric encryption
- RSA-2048+ with OAEP(SHA-256): asymmetric key wrapping
- HMAC-SHA256 and constant-time comparisons

Everything here is stateless. Module-level functions take every parameter
explicitly; ``CryptoProvider`` binds the configured lengths so callers do
not repeat them. No function here touches storage or knows about users.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple, Union
import hashlib, os

from cryptography.exceptions import InvalidSignature, InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import constant_time, hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import EncryptionConfig
from .constants import (
    AES_GCM,
    CHACHA20_POLY1305,
    DEFAULT_TAG_LENGTH,
    MIN_ITERATIONS,
    PASSWORD_HASH_LENGTH,
    RSA_PUBLIC_EXPONENT,
)
from .envelope import SealedBox
from .errors import (
    DecryptError,
    IntegrityError,
    InvalidKeyError,
    MalformedInputError,
    ValidationError,
)

Secret = Union[str, bytes]


def _to_bytes(value: Secret) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


# --------- Randomness ----------
def random_bytes(length: int) -> bytes:
    return os.urandom(length)


# --------- Key derivation ----------
def pbkdf2_derive(password: Secret, salt: bytes, iterations: int, length: int) -> bytes:
    if iterations < MIN_ITERATIONS:
        raise ValidationError(f"PBKDF2 iterations must be at least {MIN_ITERATIONS}")
    if not salt:
        raise ValidationError("salt must not be empty")
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=length, salt=salt, iterations=iterations)
    return kdf.derive(_to_bytes(password))


def hkdf_derive(ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info)
    return hkdf.derive(ikm)


# --------- AEAD (encrypt/decrypt) ----------
def _aead(algorithm: str, key: bytes):
    try:
        if algorithm == AES_GCM:
            return AESGCM(key)
        if algorithm == CHACHA20_POLY1305:
            return ChaCha20Poly1305(key)
    except (ValueError, TypeError) as e:
        raise InvalidKeyError(f"invalid {algorithm} key: {e}") from e
    raise MalformedInputError(f"unsupported or non-authenticated algorithm: {algorithm!r}")


def aead_encrypt(key: bytes, plaintext: bytes, iv: bytes, algorithm: str = AES_GCM, aad: Optional[bytes] = None) -> SealedBox:
    cipher = _aead(algorithm, key)
    try:
        sealed = cipher.encrypt(iv, plaintext, aad)
    except ValueError as e:
        raise MalformedInputError(f"invalid nonce for {algorithm}: {e}") from e
    # The AEAD output is ciphertext || tag; keep the tag as its own field.
    return SealedBox(
        ciphertext=sealed[:-DEFAULT_TAG_LENGTH],
        iv=iv,
        tag=sealed[-DEFAULT_TAG_LENGTH:],
        algorithm=algorithm,
    )


def aead_decrypt(key: bytes, box: SealedBox, aad: Optional[bytes] = None) -> bytes:
    if not isinstance(box, SealedBox):
        raise MalformedInputError(f"expected SealedBox, got {type(box).__name__}")
    if len(box.tag) != DEFAULT_TAG_LENGTH:
        raise MalformedInputError(f"authentication tag must be {DEFAULT_TAG_LENGTH} bytes")
    cipher = _aead(box.algorithm, key)
    try:
        return cipher.decrypt(box.iv, box.ciphertext + box.tag, aad)
    except InvalidTag as e:
        raise IntegrityError("authentication tag mismatch") from e
    except ValueError as e:
        raise MalformedInputError(f"malformed {box.algorithm} input: {e}") from e


# --------- RSA (wrap/unwrap) ----------
_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def rsa_generate(key_size: int) -> Tuple[str, bytes]:
    """Returns (public key PEM as str, private key PKCS8 PEM as bytes)."""
    sk = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    private_pem = sk.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = sk.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return public_pem.decode("ascii"), private_pem


def load_public_key(public_pem: Secret) -> rsa.RSAPublicKey:
    try:
        pk = serialization.load_pem_public_key(_to_bytes(public_pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError(f"unreadable public key: {e}") from e
    if not isinstance(pk, rsa.RSAPublicKey):
        raise InvalidKeyError(f"expected an RSA public key, got {type(pk).__name__}")
    return pk


def load_private_key(private_pem: Secret) -> rsa.RSAPrivateKey:
    try:
        sk = serialization.load_pem_private_key(_to_bytes(private_pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError(f"unreadable private key: {e}") from e
    if not isinstance(sk, rsa.RSAPrivateKey):
        raise InvalidKeyError(f"expected an RSA private key, got {type(sk).__name__}")
    return sk


def rsa_encrypt(data: bytes, public_pem: Secret) -> bytes:
    pk = load_public_key(public_pem)
    try:
        return pk.encrypt(data, _OAEP)
    except ValueError as e:
        raise InvalidKeyError(f"public key cannot wrap {len(data)} bytes: {e}") from e


def rsa_decrypt(ciphertext: bytes, private_pem: Secret) -> bytes:
    sk = load_private_key(private_pem)
    try:
        return sk.decrypt(ciphertext, _OAEP)
    except ValueError as e:
        raise DecryptError("private key decryption failed") from e


def public_key_bits(public_pem: Secret) -> int:
    return load_public_key(public_pem).key_size


def compute_pubkey_fingerprint(public_pem: Secret) -> str:
    """
    Stable fingerprint for an RSA public key: SHA-256 over the DER
    SubjectPublicKeyInfo, hex, truncated to 32 chars for readability.
    Used to reference retired public keys in backups and logs.
    """
    der = load_public_key(public_pem).public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:32]


# --------- HMAC / comparisons ----------
def hmac_sha256(data: bytes, key: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    return h.finalize()


def verify_hmac_sha256(data: bytes, key: bytes, tag: bytes) -> bool:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    try:
        h.verify(tag)
        return True
    except InvalidSignature:
        return False


def secure_equals(a: bytes, b: bytes) -> bool:
    return constant_time.bytes_eq(a, b)


@dataclass(frozen=True)
class PasswordHash:
    hash: bytes
    salt: bytes
    iterations: int


class CryptoProvider:
    """Primitive provider bound to one ``EncryptionConfig``."""

    def __init__(self, config: Optional[EncryptionConfig] = None):
        self.config = config or EncryptionConfig()

    @property
    def algorithm(self) -> str:
        return self.config.algorithm

    def generate_symmetric_key(self) -> bytes:
        return random_bytes(self.config.key_length)

    def generate_salt(self) -> bytes:
        return random_bytes(self.config.salt_length)

    def generate_iv(self) -> bytes:
        return random_bytes(self.config.iv_length)

    def derive_key(self, password: Secret, salt: bytes, iterations: Optional[int] = None, length: Optional[int] = None) -> bytes:
        return pbkdf2_derive(password, salt, iterations or self.config.iterations, length or self.config.key_length)

    def derive_subkey(self, key: bytes, salt: bytes, info: bytes) -> bytes:
        return hkdf_derive(key, salt, info, self.config.key_length)

    def generate_key_pair(self) -> Tuple[str, bytes]:
        return rsa_generate(self.config.rsa_key_size)

    def symmetric_encrypt(self, plaintext: bytes, key: bytes, aad: Optional[bytes] = None) -> SealedBox:
        self._check_key(key)
        return aead_encrypt(key, plaintext, self.generate_iv(), self.config.algorithm, aad)

    def symmetric_decrypt(self, box: SealedBox, key: bytes, aad: Optional[bytes] = None) -> bytes:
        # Stored envelopes may predate a key_length change; the cipher validates the size
        return aead_decrypt(key, box, aad)

    def asymmetric_encrypt(self, data: bytes, public_pem: Secret) -> bytes:
        return rsa_encrypt(data, public_pem)

    def asymmetric_decrypt(self, ciphertext: bytes, private_pem: Secret) -> bytes:
        return rsa_decrypt(ciphertext, private_pem)

    def hmac(self, data: bytes, key: bytes) -> bytes:
        return hmac_sha256(data, key)

    def verify_hmac(self, data: bytes, key: bytes, tag: bytes) -> bool:
        return verify_hmac_sha256(data, key, tag)

    def hash_password(self, password: Secret, salt: Optional[bytes] = None) -> PasswordHash:
        salt = salt or self.generate_salt()
        digest = pbkdf2_derive(password, salt, self.config.iterations, PASSWORD_HASH_LENGTH)
        return PasswordHash(hash=digest, salt=salt, iterations=self.config.iterations)

    def verify_password(self, password: Secret, stored: PasswordHash) -> bool:
        candidate = pbkdf2_derive(password, stored.salt, stored.iterations, len(stored.hash))
        return secure_equals(candidate, stored.hash)

    def _check_key(self, key: bytes) -> None:
        if not isinstance(key, (bytes, bytearray)) or len(key) != self.config.key_length:
            raise InvalidKeyError(f"symmetric key must be {self.config.key_length} bytes")
