# hrm_keys/storage/provider.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from hrm_keys.storage.models import AuditEvent, KeyRecord, SubjectClass


class StorageProvider:
    """
    Key record store interface.

    Owns all mutation of key state. There is deliberately no delete.

    - ``create`` assigns ``record_id`` and fails with ``AlreadyExistsError``
      when the subject already has an active record.
    - ``save`` is the single commit point for lifecycle changes. It fails with
      ``ConflictError`` unless the stored ``revision`` equals the one on the
      record being saved, and returns the stored value (revision + 1).
    """

    # key records
    def create(self, record: KeyRecord) -> KeyRecord: ...
    def find_active(self, subject_id: str, subject_class: SubjectClass) -> Optional[KeyRecord]: ...
    def find_latest(self, subject_id: str, subject_class: SubjectClass) -> Optional[KeyRecord]: ...
    def save(self, record: KeyRecord) -> KeyRecord: ...
    def list_records(self, subject_id: Optional[str] = None) -> List[KeyRecord]: ...

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None: ...
    def list_events(self, subject_id: Optional[str] = None) -> List[AuditEvent]: ...

    def close(self) -> None:
        return
