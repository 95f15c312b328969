"""
Object key generation for stored images.

Structure: {collection}/{record_id}/{timestamp}-{random}-{index}{ext}
The same keys are used for S3 and for the local uploads directory.
"""
import secrets
import time
from pathlib import Path
from typing import Optional


def image_extension(filename: Optional[str], default: str = ".jpg") -> str:
    """Lowercase extension of a filename, including the dot."""
    ext = Path(filename or "").suffix.lower()
    return ext or default


def build_record_image_key(
    collection: str,
    record_id: str,
    index: int,
    filename: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Build the object key for one image of a record.

    Args:
        collection: Collection name (issues, lost_found, announcements)
        record_id: Owning record id
        index: Position of the image in the upload batch
        filename: Original filename (only its extension is kept)
        timestamp_ms: Upload time in epoch milliseconds (defaults to now)

    Returns:
        Object key (without bucket name)
    """
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    rand = secrets.token_hex(4)
    return f"{collection}/{record_id}/{ts}-{rand}-{index}{image_extension(filename)}"
