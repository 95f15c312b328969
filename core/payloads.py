"""
Request payload reading for endpoints that accept either JSON or multipart.

Older clients post camelCase JSON; the web form posts multipart with the
same fields as strings plus image files.
"""
from typing import Any, Dict, List, Tuple, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from core.errors import ValidationError
from storage.image_store import ImageUpload

FILE_FIELDS = ("image", "images", "attachment", "photo", "photos")

ModelT = TypeVar("ModelT", bound=BaseModel)


def _first_error(e: PydanticValidationError) -> str:
    errors = e.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    return f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request")


def validate_model(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """model_validate with failures reported as a 400 ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e))


async def read_payload(request: Request, max_files: int = 10) -> Tuple[Dict[str, Any], List[ImageUpload]]:
    """
    Read a JSON or multipart body.

    Returns:
        (fields, uploads). For JSON bodies uploads is empty.

    Raises:
        ValidationError: Malformed JSON or too many files
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith(
        "application/x-www-form-urlencoded"
    ):
        form = await request.form()
        fields: Dict[str, Any] = {}
        uploads: List[ImageUpload] = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key not in FILE_FIELDS or not value.filename:
                    continue
                uploads.append(ImageUpload(
                    filename=value.filename,
                    content=await value.read(),
                    content_type=value.content_type,
                ))
            else:
                fields[key] = value
        if len(uploads) > max_files:
            raise ValidationError(f"At most {max_files} images per request")
        return fields, uploads

    body = await request.body()
    if not body:
        return {}, []
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data, []
