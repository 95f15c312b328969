"""
Authentication endpoints: OTP, registration, login and session lookup.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth.dependencies import get_auth_service, get_db_session
from auth.security import security
from core.errors import AppError
from core.logger import logger
from database.models import RecordKind
from services.audit_service import AuditService
from services.auth_service import AuthService
from services.email_service import EmailService
from services.record_service import RecordService
import config


router = APIRouter(prefix="/api/auth", tags=["authentication"])


# Request Models
class SendOtpRequest(BaseModel):
    """Send OTP request."""
    email: Optional[str] = None


class RegisterRequest(BaseModel):
    """
    Registration request. Known profile fields accept camelCase or snake_case;
    any other keys are kept as free-form profile data.
    """
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "fullName", "full_name"))
    otp: Optional[str] = None
    role: Optional[str] = None
    hostel: Optional[str] = None
    block: Optional[str] = None
    room_no: Optional[str] = Field(default=None, validation_alias=AliasChoices("room_no", "roomNo", "roomNumber"))
    department: Optional[str] = None
    phone: Optional[str] = None
    year: Optional[str] = None

    def to_candidate(self) -> Dict[str, Any]:
        candidate = self.model_dump(exclude_none=True)
        extra = self.model_extra or {}
        for key in extra:
            candidate.pop(key, None)
        if extra:
            candidate["profile"] = dict(extra)
        if candidate.get("otp") is not None:
            candidate["otp"] = str(candidate["otp"])
        return candidate


class LoginRequest(BaseModel):
    """Login request."""
    email: Optional[str] = None
    password: Optional[str] = None


def _audit(db: Session, request: Request, action: str, user_id: Optional[str] = None,
           details: Optional[Dict[str, Any]] = None) -> None:
    AuditService.log_from_request(
        db=db, request=request, action=action, user_id=user_id, resource_type="user",
        resource_id=user_id, details=details,
    )


@router.post("/send-otp")
async def send_otp(
    request_data: SendOtpRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    auth_service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db_session),
):
    """
    Send OTP to email address.
    The code is valid for OTP_TTL_SECONDS; delivery happens after the response.
    """
    email, otp = auth_service.send_otp(request_data.email)

    fm = getattr(request.app.state, "mail", None)
    background_tasks.add_task(EmailService.dispatch_otp, email, otp, fm)

    _audit(db, request, "send_otp", details={"email": email})
    return {
        "success": True,
        "message": "OTP sent to your email",
        "email": email,
        "expiresIn": config.OTP_TTL_SECONDS,
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request_data: RegisterRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db_session),
):
    """
    Register a new account. Requires the OTP sent by /send-otp.
    Caretaker accounts receive up to AUTO_ASSIGN_LIMIT unassigned issues.
    """
    issues = RecordService(RecordKind.ISSUE, db, credentials=request.app.state.credentials)

    def auto_assign(caretaker_id: str):
        return issues.auto_assign(caretaker_id, config.AUTO_ASSIGN_LIMIT)

    user, token = await auth_service.register(request_data.to_candidate(), auto_assigner=auto_assign)
    if user["role"] == "caretaker":
        request.app.state.notifier.notify_soon(RecordKind.ISSUE.value, {"type": "auto_assign", "caretaker": user["id"]})

    _audit(db, request, "register", user_id=user["id"], details={"role": user["role"]})
    return {
        "success": True,
        "message": "Registration successful",
        "user": user,
        "token": token,
    }


@router.post("/login")
async def login(
    request_data: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db_session),
):
    """Login with email and password."""
    try:
        user, token = await auth_service.login(request_data.email, request_data.password)
    except AppError:
        _audit(db, request, "login_failed", details={"email": (request_data.email or "").strip().lower()})
        raise

    _audit(db, request, "login", user_id=user["id"])
    return {
        "success": True,
        "message": "Login successful",
        "user": user,
        "token": token,
        "emailVerified": bool(user.get("email_verified")),
    }


@router.get("/me")
async def get_me(
    email: Optional[str] = Query(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Current account from a Bearer token, or looked up by ?email=."""
    token = credentials.credentials if credentials else None
    user = auth_service.current_user(token=token, email=email)
    return {"success": True, "user": user}


@router.post("/logout")
async def logout():
    """
    Logout. Session tokens are stateless, so this only tells the client to
    discard its token.
    """
    return {"success": True, "message": "Logged out"}


@router.get("/test-email")
async def test_email(request: Request):
    """Report whether outgoing email is configured."""
    fm = getattr(request.app.state, "mail", None)
    if fm is None:
        logger.warning("Email test requested but SMTP is not configured; OTPs are logged (demo mode)")
        return {
            "success": False,
            "message": "Email service not configured; OTP codes are written to the server log",
        }
    return {
        "success": True,
        "message": "Email service is configured",
        "sender": config.SMTP_FROM_EMAIL,
    }
