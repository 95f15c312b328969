"""
Credential store: a local JSON document (source of truth) mirrored
best-effort into the relational users table.

Local document layout::

    {"users": {"<user id>": {"id": ..., "email": ..., "password_hash": ..., ...}}}

The document is rewritten wholesale on every mutation.
"""
import json
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from core.errors import ConflictError, DependencyError, NotFoundError
from core.logger import logger
from core.validators import normalize_email
from database.connection import Database
from database.models import RemoteUser
from services.replication import mirror_best_effort, write_through

PROFILE_FIELDS = ("hostel", "block", "room_no", "department", "phone", "year")

# Keys a caller may never set through the free-form profile
RESERVED_FIELDS = {
    "id", "email", "password", "password_hash", "passwordHash",
    "role", "email_verified", "registered_at", "updated_at",
}


def public_user(record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of an account without any password material."""
    if record is None:
        return None
    return {
        k: v for k, v in record.items()
        if k not in ("password", "password_hash", "passwordHash")
    }


def _now_iso() -> str:
    return datetime.utcnow().isoformat()


def _normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Bring records written by older versions onto the current key names."""
    normalized = dict(record)
    if "password_hash" not in normalized:
        legacy_hash = normalized.pop("password", None) or normalized.pop("passwordHash", None)
        if legacy_hash:
            normalized["password_hash"] = legacy_hash
    if "room_no" not in normalized and "roomNo" in normalized:
        normalized["room_no"] = normalized.pop("roomNo")
    if "registered_at" not in normalized and "registeredAt" in normalized:
        normalized["registered_at"] = normalized.pop("registeredAt")
    normalized["email"] = normalize_email(normalized.get("email"))
    normalized.setdefault("role", "student")
    normalized["email_verified"] = bool(normalized.get("email_verified", False))
    return normalized


class LocalCredentialStore:
    """JSON-file account store; every mutation holds the lock for its read-modify-write."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise DependencyError(f"Credential store unreadable: {e}")
        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except ValueError as e:
            # Refuse to continue; a rewrite would wipe every account
            raise DependencyError(f"Credential store is corrupt: {e}")
        users = document.get("users") if isinstance(document, dict) else None
        if not isinstance(users, dict):
            raise DependencyError("Credential store has no users map")
        return {uid: _normalize_record(rec) for uid, rec in users.items() if isinstance(rec, dict)}

    def _save(self, users: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump({"users": users}, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise DependencyError(f"Credential store write failed: {e}")

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        target = normalize_email(email)
        with self._lock:
            for record in self._load().values():
                if record.get("email") == target:
                    return record
        return None

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load().get(user_id)

    def all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._load().values())

    def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new account.

        The email uniqueness check and the write happen under one lock, so two
        concurrent registrations for the same email cannot both succeed.

        Raises:
            ConflictError: If the email is already present
        """
        record = _normalize_record(record)
        with self._lock:
            users = self._load()
            if any(u.get("email") == record["email"] for u in users.values()):
                raise ConflictError("User with this email already exists")
            base_id = record["id"]
            suffix = 1
            while record["id"] in users:
                record["id"] = f"{base_id}_{suffix}"
                suffix += 1
            users[record["id"]] = record
            self._save(users)
        logger.info(f"Account stored locally: {record['id']} ({record['email']})")
        return record

    def update(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            users = self._load()
            if user_id not in users:
                raise NotFoundError("User not found")
            record = users[user_id]
            record.update(changes)
            record["updated_at"] = _now_iso()
            self._save(users)
            return dict(record)

    def delete(self, user_id: str) -> bool:
        with self._lock:
            users = self._load()
            if user_id not in users:
                return False
            del users[user_id]
            self._save(users)
        return True


class RemoteUserMirror:
    """Relational copy of the accounts, keyed by the same id."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_record(row: RemoteUser) -> Dict[str, Any]:
        record = {
            "id": row.id,
            "email": row.email,
            "password_hash": row.password_hash,
            "name": row.name,
            "role": row.role,
            "email_verified": bool(row.email_verified),
            "registered_at": row.registered_at.isoformat() if row.registered_at else None,
            "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        }
        for field in PROFILE_FIELDS:
            record[field] = getattr(row, field)
        if row.profile:
            record["profile"] = row.profile
        return record

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self.db.get_session() as session:
            row = session.query(RemoteUser).filter(RemoteUser.email == normalize_email(email)).first()
            return self._to_record(row) if row else None

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self.db.get_session() as session:
            row = session.query(RemoteUser).filter(RemoteUser.id == user_id).first()
            return self._to_record(row) if row else None

    def list(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            query = session.query(RemoteUser)
            if role:
                query = query.filter(RemoteUser.role == role)
            return [self._to_record(row) for row in query.all()]

    def upsert(self, record: Dict[str, Any]) -> None:
        with self.db.get_session() as session:
            row = session.query(RemoteUser).filter(RemoteUser.id == record["id"]).first()
            if row is None:
                row = RemoteUser(id=record["id"])
                session.add(row)
            row.email = normalize_email(record.get("email"))
            row.password_hash = record.get("password_hash")
            row.name = record.get("name")
            row.role = record.get("role") or "student"
            row.email_verified = bool(record.get("email_verified"))
            for field in PROFILE_FIELDS:
                setattr(row, field, record.get(field))
            row.profile = record.get("profile") or None
            registered_at = record.get("registered_at")
            if isinstance(registered_at, str):
                try:
                    row.registered_at = datetime.fromisoformat(registered_at)
                except ValueError:
                    pass
            try:
                session.flush()
            except IntegrityError:
                raise ConflictError("User with this email already exists")

    def delete(self, user_id: str) -> None:
        with self.db.get_session() as session:
            session.query(RemoteUser).filter(RemoteUser.id == user_id).delete()


class CredentialStore:
    """
    Account lookups and writes across both stores.

    Reads prefer the local document and fall back to the mirror; writes go
    through services.replication so only the local write can fail a request.
    """

    def __init__(self, local: LocalCredentialStore, mirror: Optional[RemoteUserMirror] = None):
        self.local = local
        self.mirror = mirror

    def _mirror_lookup(self, lookup, *args) -> Optional[Dict[str, Any]]:
        if self.mirror is None:
            return None
        try:
            return lookup(*args)
        except Exception as e:
            # An unreachable mirror counts as "not there"
            logger.error(f"Mirror lookup failed: {e}", exc_info=True)
            return None

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        record = self.local.find_by_email(email)
        if record is not None:
            return record
        remote = self._mirror_lookup(self.mirror.find_by_email, email) if self.mirror else None
        if remote is not None:
            logger.info(f"Account {remote['id']} found only in the mirror store")
        return remote

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        record = self.local.find_by_id(user_id)
        if record is not None:
            return record
        return self._mirror_lookup(self.mirror.find_by_id, user_id) if self.mirror else None

    def email_exists(self, email: str) -> bool:
        return self.find_by_email(email) is not None

    def list(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        """Local accounts plus mirror-only ones, filtered by role."""
        by_email = {r["email"]: r for r in self.local.all()}
        if self.mirror is not None:
            remote = self._mirror_lookup(self.mirror.list, None) or []
            for record in remote:
                by_email.setdefault(record["email"], record)
        records = list(by_email.values())
        if role:
            records = [r for r in records if r.get("role") == role]
        return sorted(records, key=lambda r: r.get("registered_at") or "")

    def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        saved = {}

        def primary():
            saved.update(self.local.insert(record))
            return saved

        secondary = (lambda: self.mirror.upsert(saved)) if self.mirror else None
        return write_through(primary, secondary, description=f"insert of {record.get('email')}")

    def update(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        if self.local.find_by_id(user_id) is None:
            remote = self._mirror_lookup(self.mirror.find_by_id, user_id) if self.mirror else None
            if remote is None:
                raise NotFoundError("User not found")
            remote.update(changes)
            mirror_best_effort(lambda: self.mirror.upsert(remote), description=f"update of {user_id}")
            return remote

        updated = {}

        def primary():
            updated.update(self.local.update(user_id, changes))
            return updated

        secondary = (lambda: self.mirror.upsert(updated)) if self.mirror else None
        return write_through(primary, secondary, description=f"update of {user_id}")

    def delete(self, user_id: str) -> bool:
        if self.find_by_id(user_id) is None:
            return False
        self.local.delete(user_id)
        if self.mirror is not None:
            mirror_best_effort(lambda: self.mirror.delete(user_id), description=f"delete of {user_id}")
        return True
