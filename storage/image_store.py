"""
Image storage for records: S3 when configured, otherwise the local uploads
directory served by the app under /uploads.
"""
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Set
from urllib.parse import unquote

from core.errors import ValidationError
from core.logger import logger
from core.validators import sanitize_filename, validate_file_size, validate_image_extension
from storage.s3_client import S3Client
from storage.s3_paths import build_record_image_key


@dataclass
class ImageUpload:
    """An image received with a request, already read into memory."""
    filename: str
    content: bytes
    content_type: Optional[str] = None


class ImageStore:
    """Stores images under structured keys and hands back public URLs."""

    def __init__(
        self,
        uploads_dir: Path,
        public_base_url: str,
        s3_client: Optional[S3Client] = None,
        max_size_bytes: int = 10 * 1024 * 1024,
        allowed_extensions: Optional[Set[str]] = None,
    ):
        self.uploads_dir = Path(uploads_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.s3_client = s3_client
        self.max_size_bytes = max_size_bytes
        self.allowed_extensions = allowed_extensions or {".jpg", ".jpeg", ".png", ".webp", ".gif"}

    @property
    def backend(self) -> str:
        return "s3" if self.s3_client else "local"

    def validate(self, upload: ImageUpload) -> str:
        """
        Check type and size of an upload.

        Returns:
            Sanitized filename

        Raises:
            ValidationError: If the file is not an allowed image or is too large
        """
        try:
            safe_filename = sanitize_filename(upload.filename)
        except ValueError as e:
            raise ValidationError(f"Invalid filename: {e}")
        if not validate_image_extension(safe_filename, self.allowed_extensions):
            raise ValidationError(
                f"Invalid file type. Allowed: {', '.join(sorted(self.allowed_extensions))}"
            )
        is_valid_size, size_error = validate_file_size(len(upload.content), self.max_size_bytes)
        if not is_valid_size:
            raise ValidationError(size_error)
        return safe_filename

    def save(self, collection: str, record_id: str, index: int, upload: ImageUpload) -> str:
        """
        Validate and store one image.

        Blocking; callers on the event loop run it with asyncio.to_thread.

        Returns:
            Public URL of the stored image
        """
        safe_filename = self.validate(upload)
        key = build_record_image_key(collection, record_id, index, safe_filename)

        if self.s3_client:
            return self.s3_client.upload_fileobj(
                BytesIO(upload.content),
                key,
                content_type=upload.content_type,
                metadata={"record_id": record_id, "original_filename": safe_filename},
            )

        path = self.uploads_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(upload.content)
        logger.info(f"Stored image locally: {path}")
        return f"{self.public_base_url}/uploads/{key}"

    def local_file(self, key: str) -> Optional[Path]:
        """Path of a locally stored image by key, or None when it is outside the uploads directory."""
        candidate = (self.uploads_dir / unquote(key)).resolve()
        # Never follow a URL outside the uploads directory
        if self.uploads_dir.resolve() not in candidate.parents:
            return None
        return candidate

    def _local_path_for(self, url: str) -> Optional[Path]:
        prefix = f"{self.public_base_url}/uploads/"
        if not url.startswith(prefix):
            return None
        return self.local_file(url[len(prefix):])

    def delete(self, url: str) -> bool:
        """
        Delete a stored image by URL.

        Returns:
            True if something was deleted; False for URLs this store does not own
        """
        if self.s3_client:
            key = self.s3_client.key_from_url(url)
            if not key:
                return False
            return self.s3_client.delete_file(key)

        path = self._local_path_for(url)
        if path is None or not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted local image: {path}")
        return True
