"""
hrm_keys.distributor
--------------------
Fan-out of one symmetric conversation key to many participants.

Each participant receives the same key wrapped (RSA-OAEP) under their own
public key. The result is all-or-nothing: if any participant's key cannot
be used, ``ParticipantKeyError`` names that participant and no mapping is
returned.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .crypto import CryptoProvider
from .errors import CryptoError, IntegrityError, NotFoundError, OperationTimeoutError, ParticipantKeyError, ValidationError
from .lifecycle import KeyLifecycleManager, SubjectClassLike
from .logger import get_logger
from .runner import DECRYPTION, ENCRYPTION, CryptoRunner
from .utils import b64d, b64e

log = get_logger("HRM.Keys.Distributor")


@dataclass(frozen=True)
class Participant:
    subject_id: str
    public_key: str


ParticipantsLike = Union[Iterable[Union[Participant, Tuple[Any, str]]], Mapping[Any, str]]


def _pairs(participants: ParticipantsLike) -> Iterable[Tuple[Any, str]]:
    if isinstance(participants, Mapping):
        yield from participants.items()
        return
    for p in participants:
        if isinstance(p, Participant):
            yield p.subject_id, p.public_key
        elif isinstance(p, tuple) and len(p) == 2:
            yield p
        else:
            raise ValidationError(f"participant must be a Participant or (subject_id, public_key) pair, got {type(p).__name__}")


def _normalize(participants: ParticipantsLike) -> Dict[str, str]:
    if participants is None:
        raise ValidationError("at least one participant is required")
    out: Dict[str, str] = {}
    for subject_id, public_key in _pairs(participants):
        subject_id = str(subject_id)
        if subject_id in out and out[subject_id] != public_key:
            raise ValidationError(f"participant {subject_id} listed with two different public keys")
        out[subject_id] = public_key
    if not out:
        raise ValidationError("at least one participant is required")
    return out


class ConversationKeyDistributor:
    def __init__(
        self,
        provider: Optional[CryptoProvider] = None,
        runner: Optional[CryptoRunner] = None,
        manager: Optional[KeyLifecycleManager] = None,
    ):
        self.manager = manager
        self.crypto = provider or (manager.crypto if manager else CryptoProvider())
        self.runner = runner or (manager.runner if manager else CryptoRunner(self.crypto.config))

    def distribute_key(self, participants: ParticipantsLike) -> Dict[str, str]:
        """Returns subject id -> base64 wrapped conversation key."""
        public_keys = _normalize(participants)
        conversation_key = self.crypto.generate_symmetric_key()

        wrapped: Dict[str, str] = {}
        for subject_id, public_key in public_keys.items():
            try:
                ct = self.runner.run(ENCRYPTION, self.crypto.asymmetric_encrypt, conversation_key, public_key)
            except OperationTimeoutError:
                raise
            except CryptoError as e:
                log.error(f"[DISTRIBUTE] cannot wrap conversation key for {subject_id}: {type(e).__name__}")
                raise ParticipantKeyError(subject_id, str(e)) from e
            wrapped[subject_id] = b64e(ct)

        log.debug(f"[DISTRIBUTE] wrapped conversation key for {len(wrapped)} participant(s)")
        return wrapped

    def distribute_to_subjects(self, subjects: Iterable[Tuple[Any, SubjectClassLike]]) -> Dict[str, str]:
        """Like ``distribute_key`` but resolves each subject's current published public key."""
        if self.manager is None:
            raise ValidationError("a KeyLifecycleManager is required to resolve subject public keys")
        participants = []
        for subject_id, subject_class in subjects:
            try:
                info = self.manager.get_public_key(subject_id, subject_class)
            except NotFoundError as e:
                raise ParticipantKeyError(str(subject_id), "no active key record") from e
            participants.append(Participant(str(subject_id), info.public_key))
        return self.distribute_key(participants)

    def open_key(self, wrapped_key: Union[str, bytes], private_pem: Union[str, bytes]) -> bytes:
        """Recover the conversation key with a private key the caller already holds."""
        if isinstance(wrapped_key, str):
            wrapped_key = b64d(wrapped_key)
        try:
            return self.runner.run(DECRYPTION, self.crypto.asymmetric_decrypt, wrapped_key, private_pem)
        except OperationTimeoutError:
            raise
        except CryptoError as e:
            raise IntegrityError("wrapped conversation key cannot be opened with this private key") from e

    def open_for_subject(self, subject_id: Any, subject_class: SubjectClassLike, password: str, wrapped_key: Union[str, bytes]) -> bytes:
        """Recover the conversation key via the subject's stored, password-protected private key."""
        if self.manager is None:
            raise ValidationError("a KeyLifecycleManager is required to unlock subject keys")
        return self.manager.open_wrapped_key(subject_id, subject_class, password, wrapped_key)
