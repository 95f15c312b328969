"""
Authentication dependencies for FastAPI.
"""
from typing import Any, Dict, Optional
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials

from auth.security import security
from core.errors import AuthError, AuthorizationError
from services.auth_service import AuthService
from services.status_machine import is_management, is_staff
import config


def get_db_session():
    """Get database session."""
    if not config.db:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not initialized")
    with config.db.get_session() as session:
        yield session


def get_auth_service(request: Request) -> AuthService:
    """AuthService over the credential and OTP stores created at startup."""
    return AuthService(
        credentials=request.app.state.credentials,
        otp_store=request.app.state.otp_store,
    )


def _bearer_or_query_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    # EventSource cannot send headers, so streams pass the token as a query parameter
    return request.query_params.get("token") or None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    """
    Get current authenticated user from the session token.

    Returns:
        Account record (including password hash; never return it to clients)

    Raises:
        AuthError: If the token is missing, invalid, expired, or the account is gone
    """
    token = _bearer_or_query_token(request, credentials)
    if not token:
        raise AuthError("Authentication required")
    return auth_service.user_from_token(token)


async def get_current_user_optional(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[Dict[str, Any]]:
    """Get current user if authenticated, otherwise None."""
    token = _bearer_or_query_token(request, credentials)
    if not token:
        return None
    try:
        return auth_service.user_from_token(token)
    except AuthError:
        return None


async def require_management(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Management (or legacy admin) accounts only."""
    if not is_management(current_user):
        raise AuthorizationError("Access denied. Management only.")
    return current_user


async def require_staff(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Caretaker or management accounts only."""
    if not is_staff(current_user):
        raise AuthorizationError("Access denied. Caretaker or management only.")
    return current_user


def resolve_actor(current_user: Dict[str, Any], claimed_id: Optional[str]) -> Dict[str, Any]:
    """
    The acting account is always the token's account.

    Older clients also send their id in the payload (userId, managementId);
    it is accepted only when it matches.
    """
    if claimed_id and str(claimed_id) != current_user["id"]:
        raise AuthorizationError("Payload user id does not match the authenticated user")
    return current_user
