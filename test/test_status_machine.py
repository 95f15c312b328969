"""
Status vocabulary, priority order and transition rules.
"""
import pytest

from core.errors import AuthorizationError, ValidationError
from database.models import Priority, RecordStatus, UserRole
from services.status_machine import (
    PRIORITY_RANK, check_transition, effective_role, normalize_priority, normalize_status
)

STUDENT = {"id": "user_1", "role": "student"}
CARETAKER = {"id": "user_2", "role": "caretaker"}
MANAGER = {"id": "user_3", "role": "management"}
LEGACY_ADMIN = {"id": "user_4", "role": "admin"}


@pytest.mark.parametrize("text,expected", [
    ("Reported", RecordStatus.REPORTED),
    ("in progress", RecordStatus.IN_PROGRESS),
    ("In_Progress", RecordStatus.IN_PROGRESS),
    ("Under Construction", RecordStatus.IN_PROGRESS),
    ("Repaired", RecordStatus.RESOLVED),
    ("completed", RecordStatus.RESOLVED),
    ("CLOSED", RecordStatus.CLOSED),
])
def test_status_vocabularies_map_to_one_enum(text, expected):
    assert normalize_status(text) == expected


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationError):
        normalize_status("Teleported")
    with pytest.raises(ValidationError):
        normalize_status("")


def test_priority_aliases_and_order():
    assert normalize_priority("Medium") == Priority.NORMAL
    assert normalize_priority("urgent") == Priority.EMERGENCY
    assert normalize_priority(None) == Priority.NORMAL
    ranks = [PRIORITY_RANK[p] for p in (Priority.LOW, Priority.NORMAL, Priority.HIGH, Priority.EMERGENCY)]
    assert ranks == sorted(ranks)
    with pytest.raises(ValidationError):
        normalize_priority("whenever")


def test_roles():
    assert effective_role("admin") == UserRole.MANAGEMENT
    assert effective_role("Caretaker") == UserRole.CARETAKER
    assert effective_role("janitor") == UserRole.STUDENT
    assert effective_role(None) == UserRole.STUDENT


@pytest.mark.parametrize("current", list(RecordStatus))
@pytest.mark.parametrize("target", list(RecordStatus))
def test_student_never_changes_status(current, target):
    with pytest.raises(AuthorizationError):
        check_transition(STUDENT, current, target, assigned_to_id=STUDENT["id"], caretaker_id="user_2")


def test_caretaker_moves_own_assigned_record():
    check_transition(CARETAKER, RecordStatus.ASSIGNED, RecordStatus.IN_PROGRESS, assigned_to_id="user_2")
    check_transition(CARETAKER, RecordStatus.IN_PROGRESS, RecordStatus.RESOLVED, assigned_to_id="user_2")


def test_caretaker_cannot_resolve_unassigned_record():
    with pytest.raises(AuthorizationError):
        check_transition(CARETAKER, RecordStatus.IN_PROGRESS, RecordStatus.RESOLVED, assigned_to_id="user_9")
    with pytest.raises(AuthorizationError):
        check_transition(CARETAKER, RecordStatus.ASSIGNED, RecordStatus.RESOLVED, assigned_to_id=None)


def test_caretaker_cannot_assign_or_close():
    with pytest.raises(AuthorizationError):
        check_transition(CARETAKER, RecordStatus.REPORTED, RecordStatus.ASSIGNED, "user_2", caretaker_id="user_2")
    with pytest.raises(AuthorizationError):
        check_transition(CARETAKER, RecordStatus.RESOLVED, RecordStatus.CLOSED, assigned_to_id="user_2")


def test_management_follows_lifecycle_edges():
    check_transition(MANAGER, RecordStatus.REPORTED, RecordStatus.ASSIGNED, None, caretaker_id="user_2")
    check_transition(MANAGER, RecordStatus.ASSIGNED, RecordStatus.ASSIGNED, "user_2", caretaker_id="user_5")
    check_transition(LEGACY_ADMIN, RecordStatus.RESOLVED, RecordStatus.CLOSED, "user_2")
    with pytest.raises(ValidationError):
        check_transition(MANAGER, RecordStatus.REPORTED, RecordStatus.RESOLVED, None)
    with pytest.raises(ValidationError):
        check_transition(MANAGER, RecordStatus.CLOSED, RecordStatus.REPORTED, None)


def test_assignment_needs_caretaker():
    with pytest.raises(ValidationError):
        check_transition(MANAGER, RecordStatus.REPORTED, RecordStatus.ASSIGNED, None, caretaker_id=None)


def test_legacy_current_status_is_normalized():
    check_transition(MANAGER, "Repaired", RecordStatus.CLOSED, None)
