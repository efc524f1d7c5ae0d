import threading
from typing import Any, Dict, List, Optional

from hrm_keys.errors import AlreadyExistsError, ConflictError, NotFoundError
from hrm_keys.storage.models import AuditEvent, KeyRecord, SubjectClass
from hrm_keys.storage.provider import StorageProvider
from hrm_keys.utils import new_id, now_ts


class InMemoryStorage(StorageProvider):
    def __init__(self):
        self.records: Dict[str, KeyRecord] = {}
        self.audit: List[AuditEvent] = []
        self._lock = threading.Lock()

    def _for_subject(self, subject_id: str, subject_class: SubjectClass) -> List[KeyRecord]:
        subject_id = str(subject_id)
        return [r for r in self.records.values()
                if r.subject_id == subject_id and r.subject_class == subject_class]

    def create(self, record: KeyRecord) -> KeyRecord:
        with self._lock:
            if any(r.is_valid for r in self._for_subject(record.subject_id, record.subject_class)):
                raise AlreadyExistsError(f"active key record exists for {record.subject_class.value}:{record.subject_id}")
            ts = now_ts()
            stored = record.evolve(record_id=new_id(), revision=1, created_at=ts, updated_at=ts)
            self.records[stored.record_id] = stored
            return stored

    def find_active(self, subject_id, subject_class):
        with self._lock:
            return next((r for r in self._for_subject(subject_id, subject_class) if r.is_valid), None)

    def find_latest(self, subject_id, subject_class):
        with self._lock:
            recs = self._for_subject(subject_id, subject_class)
            return max(recs, key=lambda r: (r.version, r.created_at)) if recs else None

    def save(self, record: KeyRecord) -> KeyRecord:
        with self._lock:
            current = self.records.get(record.record_id)
            if current is None:
                raise NotFoundError(f"unknown key record {record.record_id!r}")
            if current.revision != record.revision:
                raise ConflictError(
                    f"key record {record.record_id} was modified concurrently "
                    f"(stored revision {current.revision}, saving {record.revision})"
                )
            stored = record.evolve(revision=record.revision + 1, updated_at=now_ts())
            self.records[stored.record_id] = stored
            return stored

    def list_records(self, subject_id=None):
        with self._lock:
            return [r for r in self.records.values() if subject_id is None or r.subject_id == str(subject_id)]

    # audit
    def log_event(self, event_type: str, payload: Dict[str, Any]):
        with self._lock:
            self.audit.append(AuditEvent(now_ts(), event_type, dict(payload)))

    def list_events(self, subject_id=None):
        with self._lock:
            return [e for e in self.audit if subject_id is None or e.payload.get("subject_id") == str(subject_id)]
