"""
Database models for the FixIt Hostel backend.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON, Index, TypeDecorator
)
from sqlalchemy.ext.declarative import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# Custom Type Decorator for Enum Values
# ============================================================================

class EnumValue(TypeDecorator):
    """Type decorator to ensure enum values (not names) are stored."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        """Convert enum to its value when writing to database."""
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        """Convert database value back to enum when reading."""
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return self.enum_class(value)
            except ValueError:
                return value
        return value


# ============================================================================
# Enums - Must be defined before models that use them
# ============================================================================

class UserRole(str, enum.Enum):
    """User roles for authorization."""
    STUDENT = "student"
    CARETAKER = "caretaker"
    MANAGEMENT = "management"
    ADMIN = "admin"  # Legacy alias for management on older accounts


class RecordStatus(str, enum.Enum):
    """Canonical lifecycle for issues and lost & found items."""
    REPORTED = "Reported"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class Priority(str, enum.Enum):
    """Record priority, declared from least to most severe."""
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    EMERGENCY = "Emergency"


class LostFoundKind(str, enum.Enum):
    LOST = "Lost"
    FOUND = "Found"


class RecordKind(str, enum.Enum):
    """Collections that share the record lifecycle."""
    ISSUE = "issues"
    LOST_FOUND = "lost_found"


# ============================================================================
# Models
# ============================================================================

class RemoteUser(Base):
    """
    Relational mirror of the local credential store.

    Written best-effort on registration and profile changes; read as a
    fallback when an account is missing from the local JSON document.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    role = Column(String(32), default=UserRole.STUDENT.value, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    hostel = Column(String(100), nullable=True)
    block = Column(String(50), nullable=True)
    room_no = Column(String(50), nullable=True)
    department = Column(String(100), nullable=True)
    phone = Column(String(32), nullable=True)
    year = Column(String(20), nullable=True)
    profile = Column(JSON, nullable=True)  # Free-form extra profile fields
    registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_user_email', 'email', unique=True),
        Index('idx_user_role', 'role'),
    )


class RecordMixin:
    """Columns shared by issues and lost & found items."""

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    priority = Column(EnumValue(Priority), default=Priority.NORMAL, nullable=False)
    status = Column(EnumValue(RecordStatus), default=RecordStatus.REPORTED, nullable=False)
    location = Column(String(500), nullable=True)
    hostel = Column(String(100), nullable=True)
    block = Column(String(50), nullable=True)
    room_no = Column(String(50), nullable=True)
    gps_coordinates = Column(JSON, nullable=True)  # {latitude, longitude, accuracy, captured_at}
    reporter_id = Column(String(64), nullable=False)
    assigned_to_id = Column(String(64), nullable=True)
    assigned_by_id = Column(String(64), nullable=True)
    images = Column(Text, nullable=True)  # JSON-serialized list of URLs, see core/image_list.py
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    assigned_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)


class Issue(RecordMixin, Base):
    """Maintenance issue reported by a resident."""
    __tablename__ = "issues"

    __table_args__ = (
        Index('idx_issue_status', 'status'),
        Index('idx_issue_hostel', 'hostel'),
        Index('idx_issue_reporter', 'reporter_id'),
        Index('idx_issue_assignee', 'assigned_to_id'),
        Index('idx_issue_created', 'created_at'),
    )


class LostFoundItem(RecordMixin, Base):
    """Lost or found item; title holds the item name."""
    __tablename__ = "lost_found"

    item_type = Column(EnumValue(LostFoundKind), nullable=False)

    __table_args__ = (
        Index('idx_lost_found_status', 'status'),
        Index('idx_lost_found_type', 'item_type'),
        Index('idx_lost_found_reporter', 'reporter_id'),
        Index('idx_lost_found_created', 'created_at'),
    )


class RecordActivity(Base):
    """Status timeline entry for an issue or lost & found item."""
    __tablename__ = "record_activity"

    id = Column(Integer, primary_key=True, index=True)
    record_kind = Column(EnumValue(RecordKind), nullable=False)
    record_id = Column(String(36), nullable=False)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=False)
    actor_id = Column(String(64), nullable=True)
    remark = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_activity_record', 'record_kind', 'record_id'),
    )


class Claim(Base):
    """Ownership claim on a lost & found item."""
    __tablename__ = "claims"

    id = Column(String(36), primary_key=True)
    item_id = Column(String(36), nullable=False)
    claimed_by = Column(String(64), nullable=False)
    proof_text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_claim_item', 'item_id'),
        Index('idx_claim_claimer', 'claimed_by'),
    )


class Announcement(Base):
    """Notice broadcast by management."""
    __tablename__ = "announcements"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    author_id = Column(String(64), nullable=False)
    hostel = Column(String(100), nullable=True)  # Audience; null means every hostel
    priority = Column(EnumValue(Priority), default=Priority.NORMAL, nullable=False)
    published = Column(Boolean, default=True, nullable=False)
    archived = Column(Boolean, default=False, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    attachment_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_announcement_created', 'created_at'),
        Index('idx_announcement_hostel', 'hostel'),
    )


class AuditLog(Base):
    """Audit log for security and compliance."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True)
    action = Column(String(100), nullable=False)  # e.g., "register", "login_failed", "issue_delete"
    resource_type = Column(String(50), nullable=True)  # e.g., "user", "issue", "otp"
    resource_id = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_user', 'user_id'),
        Index('idx_audit_action', 'action'),
    )
