"""
Account management APIs.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth.dependencies import get_auth_service, get_current_user, get_db_session, require_management
from services.audit_service import AuditService
from services.auth_service import AuthService


router = APIRouter(prefix="/api/users", tags=["users"])


# Request Models
class ProfileUpdate(BaseModel):
    """Update own profile. Unknown keys go into the free-form profile."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "fullName", "full_name"))
    hostel: Optional[str] = None
    block: Optional[str] = None
    room_no: Optional[str] = Field(default=None, validation_alias=AliasChoices("room_no", "roomNo", "roomNumber"))
    department: Optional[str] = None
    phone: Optional[str] = None
    year: Optional[str] = None

    def to_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude_none=True)
        extra = self.model_extra or {}
        for key in extra:
            fields.pop(key, None)
        if extra:
            fields["profile"] = dict(extra)
        return fields


class PasswordChange(BaseModel):
    current_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("current_password", "currentPassword")
    )
    new_password: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("new_password", "newPassword")
    )


@router.get("")
async def list_users(
    role: Optional[str] = Query(None, description="student | caretaker | management"),
    current_user: Dict[str, Any] = Depends(require_management),
    auth_service: AuthService = Depends(get_auth_service),
):
    """List accounts (management only)."""
    users = auth_service.list_accounts(current_user, role)
    return {"success": True, "users": users, "total": len(users)}


@router.put("/me")
async def update_me(
    request_data: ProfileUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Update own name and profile fields."""
    user = auth_service.update_profile(current_user["id"], request_data.to_fields())
    return {"success": True, "message": "Profile updated", "user": user}


@router.put("/me/password")
async def change_password(
    request_data: PasswordChange,
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db_session),
):
    """Change own password; the current password must be supplied."""
    await auth_service.change_password(
        current_user["id"], request_data.current_password, request_data.new_password
    )
    AuditService.log_from_request(
        db=db, request=request, action="password_change", user_id=current_user["id"],
        resource_type="user", resource_id=current_user["id"],
    )
    return {"success": True, "message": "Password changed"}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_management),
    auth_service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db_session),
):
    """Delete an account (management only). Records it reported are kept."""
    auth_service.delete_account(current_user, user_id)
    AuditService.log_from_request(
        db=db, request=request, action="user_delete", user_id=current_user["id"],
        resource_type="user", resource_id=user_id,
    )
    return {"success": True, "message": "User deleted"}
