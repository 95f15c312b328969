"""
Image list codec for record rows.

The images column is a JSON-serialized text blob. Reads must be total: any
shape that is not a list of absolute URLs degrades to an empty list instead
of raising.
"""
import json
from typing import Any, List, Optional
from urllib.parse import urlparse

from core.logger import logger


def is_valid_url(value: Any) -> bool:
    """True for strings that parse as an absolute URL (scheme + network location)."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def parse_images(raw: Any) -> List[str]:
    """
    Parse a stored images value into a list of URLs.

    Accepts the serialized text, an already-decoded list, or null. Entries
    that are not valid URLs are dropped.

    Returns:
        List of URL strings (possibly empty); never raises
    """
    if raw is None:
        return []

    value = raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            value = raw.decode("utf-8")
        except UnicodeDecodeError:
            return []
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except ValueError:
            logger.debug(f"Unparseable images column value: {value[:80]!r}")
            return []

    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if is_valid_url(item)]


def serialize_images(urls: List[str]) -> Optional[str]:
    """Serialize URLs for storage; an empty list is stored as null."""
    cleaned = [u for u in urls if is_valid_url(u)]
    if not cleaned:
        return None
    return json.dumps(cleaned)
