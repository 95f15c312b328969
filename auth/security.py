"""
Security utilities for password hashing and session tokens.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi.security import HTTPBearer
import bcrypt

from core.logger import logger
import config

# Security schemes
security = HTTPBearer(auto_error=False)


# Password utilities
def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a password using bcrypt.

    Note: Password validation should be done before calling this function.
    Use core.validators.validate_password() to check password requirements.

    Args:
        password: Plaintext password
        rounds: bcrypt cost factor (defaults to config.BCRYPT_ROUNDS)

    Returns:
        Hash string ($2b$10$...)
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        raise ValueError("Password cannot be longer than 72 bytes. Please use a shorter password.")

    salt = bcrypt.gensalt(rounds=rounds or config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against a hash. A missing or malformed hash never matches."""
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError as e:
        logger.warning(f"Stored password hash could not be checked: {e}")
        return False


# Session token utilities
def create_session_token(
    user_id: str,
    email: str,
    expires_delta: Optional[timedelta] = None,
    secret_key: Optional[str] = None,
) -> str:
    """
    Create a signed session token carrying the account id and email.

    Tokens are stateless; logout is client-side and there is no revocation.

    Args:
        user_id: Account id
        email: Normalized email
        expires_delta: Optional lifetime (defaults to SESSION_TOKEN_EXPIRE_DAYS)
        secret_key: Optional signing key (defaults to config.SECRET_KEY)

    Returns:
        Encoded JWT token
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(days=config.SESSION_TOKEN_EXPIRE_DAYS))
    to_encode = {
        "sub": user_id,
        "id": user_id,
        "email": email,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(to_encode, secret_key or config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_session_token(token: str, secret_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a session token.

    Args:
        token: JWT token to decode
        secret_key: Optional verification key (defaults to config.SECRET_KEY)

    Returns:
        Decoded token payload or None if invalid or expired
    """
    try:
        payload = jwt.decode(token, secret_key or config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.debug(f"Session token rejected: {e}")
        return None
    if payload.get("type") != "access" or not payload.get("id"):
        return None
    return payload
