"""
Record status lifecycle and role rules.

    Reported -> Assigned -> In Progress -> Resolved -> Closed

Older clients still send the previous vocabularies (Under Construction,
Repaired, Open, Claimed, ...); they are mapped onto the canonical statuses
before any rule is applied.
"""
from typing import Any, Dict, Optional

from core.errors import AuthorizationError, ValidationError
from database.models import Priority, RecordStatus, UserRole

LEGACY_STATUS_ALIASES = {
    "under construction": RecordStatus.IN_PROGRESS,
    "repaired": RecordStatus.RESOLVED,
    "completed": RecordStatus.RESOLVED,
    "open": RecordStatus.REPORTED,
    "pending": RecordStatus.REPORTED,
    "claimed": RecordStatus.RESOLVED,
    "returned": RecordStatus.RESOLVED,
}

PRIORITY_ALIASES = {
    "medium": Priority.NORMAL,
    "urgent": Priority.EMERGENCY,
}

# Severity rank, higher is more urgent
PRIORITY_RANK = {priority: rank for rank, priority in enumerate(Priority)}

ALLOWED_TRANSITIONS = {
    RecordStatus.REPORTED: {RecordStatus.ASSIGNED},
    RecordStatus.ASSIGNED: {RecordStatus.ASSIGNED, RecordStatus.IN_PROGRESS, RecordStatus.RESOLVED},
    RecordStatus.IN_PROGRESS: {RecordStatus.RESOLVED},
    RecordStatus.RESOLVED: {RecordStatus.CLOSED},
    RecordStatus.CLOSED: set(),
}

CARETAKER_TARGETS = {RecordStatus.IN_PROGRESS, RecordStatus.RESOLVED}


def _fold(value: str) -> str:
    return " ".join(value.replace("_", " ").replace("-", " ").split()).lower()


def normalize_status(value: Any) -> RecordStatus:
    """Map canonical or legacy status text onto RecordStatus."""
    if isinstance(value, RecordStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Status is required")
    folded = _fold(value)
    for status in RecordStatus:
        if status.value.lower() == folded:
            return status
    if folded in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[folded]
    allowed = ", ".join(s.value for s in RecordStatus)
    raise ValidationError(f"Invalid status. Allowed: {allowed}")


def normalize_priority(value: Any, default: Priority = Priority.NORMAL) -> Priority:
    """Map priority text (including Medium/Urgent) onto Priority; empty means default."""
    if isinstance(value, Priority):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    folded = _fold(str(value))
    for priority in Priority:
        if priority.value.lower() == folded:
            return priority
    if folded in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[folded]
    allowed = ", ".join(p.value for p in Priority)
    raise ValidationError(f"Invalid priority. Allowed: {allowed}")


def effective_role(role: Any) -> UserRole:
    """Role used for authorization; legacy admin acts as management, unknown as student."""
    value = role.value if isinstance(role, UserRole) else str(role or "").strip().lower()
    if value == UserRole.ADMIN.value:
        return UserRole.MANAGEMENT
    try:
        return UserRole(value)
    except ValueError:
        return UserRole.STUDENT


def is_management(user: Dict[str, Any]) -> bool:
    return effective_role(user.get("role")) == UserRole.MANAGEMENT


def is_staff(user: Dict[str, Any]) -> bool:
    """Caretakers and management see every record."""
    return effective_role(user.get("role")) in (UserRole.CARETAKER, UserRole.MANAGEMENT)


def check_transition(
    actor: Dict[str, Any],
    current: RecordStatus,
    target: RecordStatus,
    assigned_to_id: Optional[str],
    caretaker_id: Optional[str] = None,
) -> None:
    """
    Decide whether an actor may move a record from current to target.

    Role gating runs before the edge check, so a student is always refused
    with AuthorizationError regardless of the edge.

    Raises:
        AuthorizationError: The actor's role may not perform this change
        ValidationError: The edge is not part of the lifecycle, or Assigned lacks a caretaker
    """
    role = effective_role(actor.get("role"))
    if role == UserRole.STUDENT:
        raise AuthorizationError("Students cannot change record status")
    if role == UserRole.CARETAKER:
        if target not in CARETAKER_TARGETS:
            raise AuthorizationError("Caretakers can only mark records In Progress or Resolved")
        if assigned_to_id != actor.get("id"):
            raise AuthorizationError("Record is not assigned to you")

    current = normalize_status(current)
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot change status from {current.value} to {target.value}")
    if target == RecordStatus.ASSIGNED and not caretaker_id:
        raise ValidationError("caretakerId is required to assign a record")
