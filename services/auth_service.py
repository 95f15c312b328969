"""
Registration and login orchestration.

Registration is gated by a one-time passcode sent to the email address.
Accounts are written to the local credential store first and mirrored
best-effort to the relational store.
"""
import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from auth.security import create_session_token, decode_session_token, get_password_hash, verify_password
from core.errors import AuthError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from core.logger import logger
from core.validators import normalize_email, validate_email, validate_password
from database.models import UserRole
from services.credential_store import PROFILE_FIELDS, RESERVED_FIELDS, CredentialStore, public_user
from services.otp_service import OtpStore
from services.status_machine import is_management
import config

# Called with a new caretaker's id; returns the ids of records handed to them
AutoAssigner = Callable[[str], List[str]]


def new_user_id() -> str:
    return f"user_{int(time.time() * 1000)}"


def parse_role(role: Optional[str], allowed: Optional[List[str]] = None) -> str:
    """Validate a requested role; empty means student."""
    value = (role or "").strip().lower() or UserRole.STUDENT.value
    allowed = allowed if allowed is not None else config.SELF_REGISTRATION_ROLES
    if value not in allowed:
        raise ValidationError(f"Invalid role. Allowed: {', '.join(allowed)}")
    return value


class AuthService:
    """Account flows over an injected credential store and OTP store."""

    def __init__(self, credentials: CredentialStore, otp_store: OtpStore):
        self.credentials = credentials
        self.otp_store = otp_store

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    def send_otp(self, email: Optional[str]) -> Tuple[str, str]:
        """
        Issue a passcode for an email.

        Returns:
            (normalized email, code); the caller schedules delivery

        Raises:
            InvalidEmailError: If the email is malformed
        """
        normalized = validate_email(email)
        return normalized, self.otp_store.issue(normalized)

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    @staticmethod
    def _profile_fields(candidate: Dict[str, Any]) -> Dict[str, Any]:
        fields = {f: candidate.get(f) for f in PROFILE_FIELDS if candidate.get(f) not in (None, "")}
        extra = {
            k: v for k, v in (candidate.get("profile") or {}).items()
            if k not in RESERVED_FIELDS and k not in PROFILE_FIELDS
        }
        if extra:
            fields["profile"] = extra
        return fields

    async def create_account(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        role: str = UserRole.STUDENT.value,
        email_verified: bool = False,
        profile: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Store a new account (no OTP involved).

        Raises:
            ConflictError: If the email exists in either store
        """
        normalized = validate_email(email)
        validate_password(password, config.MIN_PASSWORD_LENGTH)
        if self.credentials.email_exists(normalized):
            raise ConflictError("Email already registered. Please use a different email or login instead.")

        password_hash = await asyncio.to_thread(get_password_hash, password, config.BCRYPT_ROUNDS)
        now = datetime.utcnow().isoformat()
        record = {
            "id": new_user_id(),
            "email": normalized,
            "password_hash": password_hash,
            "name": (name or "").strip() or normalized.split("@")[0],
            "role": role,
            "email_verified": email_verified,
            "registered_at": now,
            "updated_at": now,
        }
        record.update(profile or {})
        saved = self.credentials.create(record)
        logger.info(f"Account registered: {saved['id']} ({normalized}, role={role})")
        return saved

    async def register(
        self,
        candidate: Dict[str, Any],
        auto_assigner: Optional[AutoAssigner] = None,
    ) -> Tuple[Dict[str, Any], str]:
        """
        Register an account after consuming its OTP.

        Args:
            candidate: email, password, name, otp, role and profile fields
            auto_assigner: Gives unassigned issues to a new caretaker; failures are logged

        Returns:
            (public user, session token)

        Raises:
            ValidationError: Bad email/password/role, or a missing/expired/wrong OTP
            ConflictError: Email already registered
        """
        email = validate_email(candidate.get("email"))
        validate_password(candidate.get("password"), config.MIN_PASSWORD_LENGTH)
        role = parse_role(candidate.get("role"))

        otp = str(candidate.get("otp") or "").strip()
        if not otp:
            raise ValidationError("OTP is required")
        self.otp_store.verify(email, otp)

        user = await self.create_account(
            email=email,
            password=candidate["password"],
            name=candidate.get("name"),
            role=role,
            email_verified=True,
            profile=self._profile_fields(candidate),
        )

        if role == UserRole.CARETAKER.value and auto_assigner is not None:
            try:
                assigned = auto_assigner(user["id"])
                if assigned:
                    logger.info(f"Caretaker {user['id']} received {len(assigned)} issue(s) on registration")
            except Exception as e:
                logger.error(f"Auto-assignment for caretaker {user['id']} failed: {e}", exc_info=True)

        token = create_session_token(user["id"], user["email"])
        return public_user(user), token

    async def login(self, email: Optional[str], password: Optional[str]) -> Tuple[Dict[str, Any], str]:
        """
        Check credentials and issue a session token.

        Every failure gives the same AuthError so callers cannot probe which
        emails exist.
        """
        normalized = normalize_email(email)
        if not normalized or not password:
            raise ValidationError("Email and password are required")

        user = self.credentials.find_by_email(normalized)
        if user is None:
            logger.warning(f"Login failed for {normalized}: unknown email")
            raise AuthError()
        matches = await asyncio.to_thread(verify_password, password, user.get("password_hash"))
        if not matches:
            logger.warning(f"Login failed for {normalized}: bad password")
            raise AuthError()

        if not user.get("email_verified"):
            user = self.credentials.update(user["id"], {"email_verified": True})
            logger.info(f"Email verified on first login: {normalized}")

        token = create_session_token(user["id"], user["email"])
        logger.info(f"Login successful: {user['id']} ({normalized})")
        return public_user(user), token

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def user_from_token(self, token: str) -> Dict[str, Any]:
        """
        Resolve a session token to its account.

        Raises:
            AuthError: Token invalid/expired or account gone
        """
        payload = decode_session_token(token)
        if payload is None:
            raise AuthError("Invalid or expired token")
        user = self.credentials.find_by_id(payload["id"])
        if user is None:
            raise AuthError("User not found")
        return user

    def current_user(self, token: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        """Public account for a bearer token or an email query."""
        if token:
            return public_user(self.user_from_token(token))
        if not email:
            raise ValidationError("Email or token is required")
        user = self.credentials.find_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        return public_user(user)

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Change name and profile fields. Email, role and password are not editable here."""
        changes = {}
        if fields.get("name") is not None:
            if not str(fields["name"]).strip():
                raise ValidationError("Name cannot be empty")
            changes["name"] = str(fields["name"]).strip()
        changes.update(self._profile_fields(fields))
        if "profile" in changes:
            existing = (self.credentials.find_by_id(user_id) or {}).get("profile") or {}
            changes["profile"] = {**existing, **changes["profile"]}
        if not changes:
            raise ValidationError("No profile fields to update")
        return public_user(self.credentials.update(user_id, changes))

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.credentials.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        matches = await asyncio.to_thread(verify_password, current_password, user.get("password_hash"))
        if not matches:
            raise AuthError("Current password is incorrect")
        validate_password(new_password, config.MIN_PASSWORD_LENGTH)
        password_hash = await asyncio.to_thread(get_password_hash, new_password, config.BCRYPT_ROUNDS)
        self.credentials.update(user_id, {"password_hash": password_hash})
        logger.info(f"Password changed for {user_id}")

    def list_accounts(self, actor: Dict[str, Any], role: Optional[str] = None) -> List[Dict[str, Any]]:
        if not is_management(actor):
            raise AuthorizationError("Only management can list users")
        return [public_user(u) for u in self.credentials.list(role)]

    def delete_account(self, actor: Dict[str, Any], user_id: str) -> None:
        if not is_management(actor):
            raise AuthorizationError("Only management can delete users")
        if actor["id"] == user_id:
            raise ValidationError("You cannot delete your own account")
        if not self.credentials.delete(user_id):
            raise NotFoundError("User not found")
        logger.info(f"Account {user_id} deleted by {actor['id']}")
