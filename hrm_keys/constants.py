# hrm_keys/constants.py

SCHEMA_VERSION = "1.0"

AES_GCM = "aes-256-gcm"
CHACHA20_POLY1305 = "chacha20-poly1305"
AEAD_ALGORITHMS = (AES_GCM, CHACHA20_POLY1305)

DEFAULT_ALGORITHM = AES_GCM
DEFAULT_KEY_LENGTH = 32
DEFAULT_IV_LENGTH = 12
DEFAULT_TAG_LENGTH = 16
DEFAULT_SALT_LENGTH = 32
DEFAULT_ITERATIONS = 100_000
MIN_ITERATIONS = 10_000
DEFAULT_RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

KDF_ALGORITHM = "pbkdf2-sha256"
PASSWORD_HASH_LENGTH = 64

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_ALLOWED_FILE_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "text/plain",
)

# HKDF context for the private-key wrapping key derived from the master key
PRIVATE_KEY_INFO = b"hrm-keys/private-key/v1"

# AAD labels bind each envelope kind to its purpose
MASTER_KEY_AAD = b"hrm-keys/master-key"
PRIVATE_KEY_AAD = b"hrm-keys/private-key"
MESSAGE_AAD = b"message-auth"
FILE_AAD = b"file-auth"
SUBJECT_CONTENT_AAD = b"hrm-keys/subject-content"

INTEGRITY_TEST_STRING = "test-integrity-check"
