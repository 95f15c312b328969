"""
Management dashboard APIs.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth.dependencies import get_auth_service, get_db_session, require_management
from core.errors import NotFoundError, ValidationError
from database.models import RecordKind, UserRole
from services.audit_service import AuditService
from services.auth_service import AuthService
from services.record_service import RecordService
from services.status_machine import effective_role
import config


router = APIRouter(prefix="/api/management", tags=["management"])


class AutoAssignRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    caretaker_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("caretaker_id", "caretakerId")
    )
    limit: Optional[int] = None


@router.get("/caretakers")
async def list_caretakers(
    current_user: Dict[str, Any] = Depends(require_management),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Caretaker accounts, for assignment pickers."""
    caretakers = auth_service.list_accounts(current_user, UserRole.CARETAKER.value)
    return {"success": True, "caretakers": caretakers, "total": len(caretakers)}


@router.post("/auto-assign-issues")
async def auto_assign_issues(
    request_data: AutoAssignRequest,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_management),
    db: Session = Depends(get_db_session),
):
    """Hand the oldest unassigned issues to a caretaker."""
    if not request_data.caretaker_id:
        raise ValidationError("caretakerId is required")
    caretaker = request.app.state.credentials.find_by_id(request_data.caretaker_id)
    if caretaker is None or effective_role(caretaker.get("role")) != UserRole.CARETAKER:
        raise NotFoundError("Caretaker not found")
    limit = request_data.limit or config.AUTO_ASSIGN_LIMIT
    if limit < 1:
        raise ValidationError("limit must be positive")

    issues = RecordService(RecordKind.ISSUE, db, credentials=request.app.state.credentials)
    assigned = issues.auto_assign(caretaker["id"], limit, actor_id=current_user["id"])
    if assigned:
        request.app.state.notifier.notify_soon(RecordKind.ISSUE.value, {"type": "auto_assign", "ids": assigned})
    AuditService.log_from_request(
        db=db, request=request, action="issues_auto_assign", user_id=current_user["id"],
        resource_type="user", resource_id=caretaker["id"], details={"issues": assigned},
    )
    return {"success": True, "assigned": assigned, "count": len(assigned)}


@router.get("/stats")
async def get_stats(
    current_user: Dict[str, Any] = Depends(require_management),
    db: Session = Depends(get_db_session),
):
    """Counts by status and priority for both collections."""
    return {
        "success": True,
        "issues": RecordService(RecordKind.ISSUE, db).stats(),
        "lost_found": RecordService(RecordKind.LOST_FOUND, db).stats(),
    }
