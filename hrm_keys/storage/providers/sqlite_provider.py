from __future__ import annotations
from typing import Optional, Dict, Any, List
import json, sqlite3, os, threading

from hrm_keys.errors import AlreadyExistsError, ConflictError, NotFoundError
from hrm_keys.storage.models import AuditEvent, KeyRecord, SubjectClass
from hrm_keys.storage.provider import StorageProvider
from hrm_keys.utils import canonical_json, new_id, now_ts

_RECORD_COLUMNS = "record_id, subject_id, subject_class, version, active, compromised, revision, body, created_at, updated_at"


class SQLiteStorage(StorageProvider):
    def __init__(self, path="db/hrm_keys.db"):
        # If no directory, default to current working directory
        dir_path = os.path.dirname(path) or "."
        os.makedirs(dir_path, exist_ok=True)
        self.db = sqlite3.connect(path, check_same_thread=False)
        self._lock = threading.RLock()

        self._init()

    def _init(self) -> None:
        c = self.db.cursor()

        c.execute("""CREATE TABLE IF NOT EXISTS key_records(
            record_id TEXT PRIMARY KEY,
            subject_id TEXT NOT NULL,
            subject_class TEXT NOT NULL,
            version INTEGER NOT NULL,
            active INTEGER NOT NULL,
            compromised INTEGER NOT NULL,
            revision INTEGER NOT NULL,
            body TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )""")
        # At most one active, non-compromised record per subject
        c.execute("""CREATE UNIQUE INDEX IF NOT EXISTS ux_key_records_active
            ON key_records(subject_id, subject_class)
            WHERE active = 1 AND compromised = 0""")
        c.execute("""CREATE INDEX IF NOT EXISTS ix_key_records_subject
            ON key_records(subject_id, subject_class, version)""")
        c.execute("""CREATE TABLE IF NOT EXISTS audit(
            ts TEXT,
            event_type TEXT,
            subject_id TEXT,
            payload TEXT
        )""")

        self.db.commit()

    @staticmethod
    def _row_to_record(row) -> KeyRecord:
        record_id, _sid, _cls, _ver, _act, _comp, revision, body, created_at, updated_at = row
        data = json.loads(body)
        data.update(record_id=record_id, revision=revision, created_at=created_at, updated_at=updated_at)
        return KeyRecord.from_dict(data)

    @staticmethod
    def _params(rec: KeyRecord) -> tuple:
        body = canonical_json(rec.to_dict()).decode("utf-8")
        return (
            rec.record_id,
            rec.subject_id,
            rec.subject_class.value,
            rec.version,
            int(rec.status.active),
            int(rec.status.compromised),
            rec.revision,
            body,
            rec.created_at,
            rec.updated_at,
        )

    def create(self, record: KeyRecord) -> KeyRecord:
        with self._lock:
            if self.find_active(record.subject_id, record.subject_class) is not None:
                raise AlreadyExistsError(f"active key record exists for {record.subject_class.value}:{record.subject_id}")
            ts = now_ts()
            stored = record.evolve(record_id=new_id(), revision=1, created_at=ts, updated_at=ts)
            try:
                self.db.execute(
                    f"INSERT INTO key_records({_RECORD_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?)",
                    self._params(stored),
                )
                self.db.commit()
            except sqlite3.IntegrityError as e:
                self.db.rollback()
                raise AlreadyExistsError(
                    f"active key record exists for {record.subject_class.value}:{record.subject_id}"
                ) from e
            return stored

    def find_active(self, subject_id: str, subject_class: SubjectClass) -> Optional[KeyRecord]:
        with self._lock:
            cur = self.db.execute(
                f"SELECT {_RECORD_COLUMNS} FROM key_records "
                "WHERE subject_id=? AND subject_class=? AND active=1 AND compromised=0",
                (str(subject_id), subject_class.value),
            )
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def find_latest(self, subject_id: str, subject_class: SubjectClass) -> Optional[KeyRecord]:
        with self._lock:
            cur = self.db.execute(
                f"SELECT {_RECORD_COLUMNS} FROM key_records "
                "WHERE subject_id=? AND subject_class=? ORDER BY version DESC, created_at DESC LIMIT 1",
                (str(subject_id), subject_class.value),
            )
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def save(self, record: KeyRecord) -> KeyRecord:
        with self._lock:
            stored = record.evolve(revision=record.revision + 1, updated_at=now_ts())
            p = self._params(stored)
            cur = self.db.execute(
                "UPDATE key_records SET version=?, active=?, compromised=?, revision=?, body=?, updated_at=? "
                "WHERE record_id=? AND revision=?",
                (p[3], p[4], p[5], p[6], p[7], p[9], record.record_id, record.revision),
            )
            if cur.rowcount == 0:
                self.db.rollback()
                exists = self.db.execute("SELECT revision FROM key_records WHERE record_id=?", (record.record_id,)).fetchone()
                if exists is None:
                    raise NotFoundError(f"unknown key record {record.record_id!r}")
                raise ConflictError(
                    f"key record {record.record_id} was modified concurrently "
                    f"(stored revision {exists[0]}, saving {record.revision})"
                )
            self.db.commit()
            return stored

    def list_records(self, subject_id: Optional[str] = None) -> List[KeyRecord]:
        with self._lock:
            if subject_id is None:
                cur = self.db.execute(f"SELECT {_RECORD_COLUMNS} FROM key_records ORDER BY created_at")
            else:
                cur = self.db.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM key_records WHERE subject_id=? ORDER BY created_at",
                    (str(subject_id),),
                )
            rows = cur.fetchall()
        return [self._row_to_record(r) for r in rows]

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.db.execute(
                "INSERT INTO audit(ts,event_type,subject_id,payload) VALUES(?,?,?,?)",
                (now_ts(), event_type, payload.get("subject_id"), json.dumps(payload, separators=(",", ":"), sort_keys=True)),
            )
            self.db.commit()

    def list_events(self, subject_id: Optional[str] = None) -> List[AuditEvent]:
        with self._lock:
            if subject_id is None:
                cur = self.db.execute("SELECT ts, event_type, payload FROM audit ORDER BY rowid")
            else:
                cur = self.db.execute(
                    "SELECT ts, event_type, payload FROM audit WHERE subject_id=? ORDER BY rowid",
                    (str(subject_id),),
                )
            rows = cur.fetchall()
        return [AuditEvent(ts, event_type, json.loads(payload)) for ts, event_type, payload in rows]

    def close(self):
        self.db.close()
