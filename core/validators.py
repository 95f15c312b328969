"""
Input validation utilities for the FixIt Hostel backend.
"""
import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from core.errors import InvalidEmailError, ValidationError, WeakPasswordError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def normalize_email(email: Optional[str]) -> str:
    """Lowercase and trim an email; every lookup goes through this."""
    return (email or "").strip().lower()


def validate_email(email: Optional[str]) -> str:
    """
    Normalize an email and check it has a local@domain.tld shape.

    Returns:
        The normalized email

    Raises:
        InvalidEmailError: If the email is missing or malformed
    """
    normalized = normalize_email(email)
    if not normalized or not EMAIL_PATTERN.match(normalized):
        raise InvalidEmailError()
    return normalized


def validate_password(password: Optional[str], min_length: int = 6) -> None:
    """
    Validate password rules.

    Requirements:
    - Minimum 6 characters
    - Maximum 72 bytes (bcrypt limit)

    Raises:
        WeakPasswordError: If a rule is violated
    """
    if not password:
        raise WeakPasswordError("Password is required")
    if len(password) < min_length:
        raise WeakPasswordError(f"Password must be at least {min_length} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPasswordError("Password cannot be longer than 72 bytes. Please use a shorter password.")


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    # Remove directory separators and path components
    filename = os.path.basename(filename)

    # Keep alphanumeric, dots, dashes, underscores
    safe_chars = []
    for char in filename:
        if char.isalnum() or char in "._-":
            safe_chars.append(char)
        else:
            safe_chars.append("_")

    sanitized = "".join(safe_chars)

    if len(sanitized) > 255:
        sanitized = sanitized[:255]

    if not sanitized:
        raise ValueError("Filename became empty after sanitization")

    return sanitized


def validate_image_extension(filename: str, allowed_extensions: set) -> bool:
    """
    Validate image file extension.

    Args:
        filename: Filename to check
        allowed_extensions: Set of allowed extensions (e.g., {".jpg", ".png"})

    Returns:
        True if extension is allowed
    """
    if not filename:
        return False

    ext = Path(filename).suffix.lower()
    return ext in allowed_extensions


def validate_file_size(file_size: int, max_size_bytes: int) -> Tuple[bool, Optional[str]]:
    """
    Validate file size.

    Args:
        file_size: File size in bytes
        max_size_bytes: Maximum allowed size in bytes

    Returns:
        Tuple of (is_valid, error_message)
    """
    if file_size <= 0:
        return False, "File size must be greater than 0"

    if file_size > max_size_bytes:
        max_size_mb = max_size_bytes / (1024 * 1024)
        actual_size_mb = file_size / (1024 * 1024)
        return False, f"File too large: {actual_size_mb:.2f}MB (max: {max_size_mb:.2f}MB)"

    return True, None


def parse_bool(value: Any) -> bool:
    """Parse form string to bool. Form data sends everything as strings."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def parse_gps(value: Any) -> Optional[Dict[str, Any]]:
    """
    Normalize a GPS payload into {latitude, longitude, accuracy, captured_at}.

    Accepts a dict (JSON body) or a JSON string (multipart form field), with
    either camelCase or snake_case keys and lat/lng shorthands.

    Raises:
        ValidationError: If coordinates are present but out of range
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError("gpsCoordinates must be a JSON object")
    if not isinstance(value, dict):
        raise ValidationError("gpsCoordinates must be a JSON object")

    lat = value.get("latitude", value.get("lat"))
    lon = value.get("longitude", value.get("lng", value.get("lon")))
    if lat is None or lon is None:
        return None
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        raise ValidationError("GPS latitude/longitude must be numbers")
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise ValidationError("GPS coordinates out of range")

    accuracy = value.get("accuracy")
    try:
        accuracy = float(accuracy) if accuracy is not None else None
    except (TypeError, ValueError):
        accuracy = None

    captured_at = value.get("captured_at") or value.get("capturedAt") or value.get("timestamp")
    if captured_at is None:
        captured_at = datetime.utcnow().isoformat()

    return {
        "latitude": lat,
        "longitude": lon,
        "accuracy": accuracy,
        "captured_at": str(captured_at),
    }
