"""
hrm_keys.content
----------------
Message and file encryption with a conversation (or other symmetric) key.

Both paths use the provider's AEAD cipher, so tampering always surfaces as
``IntegrityError``. Files are checked against the configured size limit and
MIME allow-list before any encryption happens.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import EncryptionConfig
from .constants import FILE_AAD, MESSAGE_AAD
from .crypto import CryptoProvider
from .envelope import SealedBox
from .errors import DecryptError, ValidationError
from .logger import get_logger
from .runner import DECRYPTION, ENCRYPTION, CryptoRunner

log = get_logger("HRM.Keys.Content")


@dataclass(frozen=True)
class EncryptedFile:
    box: SealedBox
    mime_type: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        d = self.box.to_dict()
        d.update(mime_type=self.mime_type, size=self.size)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedFile":
        return cls(box=SealedBox.from_dict(data), mime_type=data.get("mime_type", ""), size=int(data.get("size", 0)))


class ContentCipher:
    def __init__(self, config: Optional[EncryptionConfig] = None, provider: Optional[CryptoProvider] = None, runner: Optional[CryptoRunner] = None):
        self.config = config or (provider.config if provider else EncryptionConfig())
        self.crypto = provider or CryptoProvider(self.config)
        self.runner = runner or CryptoRunner(self.config)

    def encrypt_message(self, text: str, key: bytes, aad: bytes = MESSAGE_AAD) -> SealedBox:
        if not isinstance(text, str):
            raise ValidationError("message content must be text")
        return self.runner.run(ENCRYPTION, self.crypto.symmetric_encrypt, text.encode("utf-8"), key, aad)

    def decrypt_message(self, box: SealedBox, key: bytes, aad: bytes = MESSAGE_AAD) -> str:
        plaintext = self.runner.run(DECRYPTION, self.crypto.symmetric_decrypt, box, key, aad)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError("decrypted message is not valid UTF-8") from e

    def check_file(self, size: int, mime_type: str) -> None:
        if size > self.config.max_file_size:
            raise ValidationError(f"file too large: {size} bytes (max {self.config.max_file_size})")
        if mime_type not in self.config.allowed_file_types:
            raise ValidationError(f"file type not allowed: {mime_type!r}")

    def encrypt_file(self, data: bytes, key: bytes, mime_type: str) -> EncryptedFile:
        data = bytes(data)
        self.check_file(len(data), mime_type)
        box = self.runner.run(ENCRYPTION, self.crypto.symmetric_encrypt, data, key, FILE_AAD + b"|" + mime_type.encode("utf-8"))
        log.debug(f"[CONTENT] encrypted file mime={mime_type} size={len(data)}")
        return EncryptedFile(box=box, mime_type=mime_type, size=len(data))

    def decrypt_file(self, encrypted: EncryptedFile, key: bytes) -> bytes:
        # MIME type is authenticated data: relabelling the file breaks the tag
        return self.runner.run(
            DECRYPTION, self.crypto.symmetric_decrypt,
            encrypted.box, key, FILE_AAD + b"|" + encrypted.mime_type.encode("utf-8"),
        )
