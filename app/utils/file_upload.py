"""
File Upload Utility - validate multipart uploads before they go to storage.

Supported formats:
- Images (avatar, company logo): JPEG, PNG, WEBP
- Documents (resume): PDF

Max file size: MAX_UPLOAD_SIZE_BYTES (2MB by default)

Endpoints that take uploads also accept a plain JSON body; read_request_data()
turns either form into a dict for the pydantic schemas.
"""

import json
from typing import Optional, Iterable, Tuple

from fastapi import Request, UploadFile
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.core.config import get_settings
from app.core.errors import ApiError

DEFAULT_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}
DEFAULT_DOCUMENT_TYPES = {"application/pdf"}

IMAGE_TRANSFORMATION = [{"width": 800, "height": 800, "crop": "limit"}]


def has_file(file: Optional[UploadFile]) -> bool:
    """Browsers send an empty part for untouched file inputs."""
    return file is not None and bool(file.filename)


async def read_upload(
    file: UploadFile,
    allowed_types: Iterable[str],
    label: str = "File",
) -> bytes:
    """
    Read an uploaded file after checking its content type and size.

    Raises:
        ApiError 400 on a disallowed type, 413 when too large
    """
    allowed = set(allowed_types)
    content_type = (file.content_type or "").lower()
    if content_type not in allowed:
        raise ApiError(
            f"{label} has unsupported type '{content_type or 'unknown'}'. "
            f"Allowed: {', '.join(sorted(allowed))}",
            400,
        )

    max_bytes = get_settings().max_upload_size_bytes
    content = await file.read()
    if len(content) > max_bytes:
        raise ApiError(f"{label} too large. Maximum size: {max_bytes} bytes", 413)
    if not content:
        raise ApiError(f"{label} is empty", 400)
    return content


FORM_CONTENT_TYPES = {"multipart/form-data", "application/x-www-form-urlencoded"}


def _assign(data: dict, key: str, value) -> None:
    """Nest dotted form keys: "location.city" -> data["location"]["city"]."""
    parent, _, child = key.partition(".")
    if not child:
        data[key] = value
        return
    nested = data.setdefault(parent, {})
    if not isinstance(nested, dict):
        raise ApiError(f"Conflicting fields for '{parent}'", 400)
    nested[child] = value


async def read_request_data(request: Request, file_fields: Iterable[str] = ()) -> Tuple[dict, dict]:
    """
    Read body fields and uploads from a JSON or form request.

    Returns:
        (data, files) - files maps each of `file_fields` that was uploaded
        to its UploadFile. JSON bodies never carry files.

    Raises:
        ApiError 400 on malformed JSON, 415 on any other content type
    """
    file_fields = set(file_fields)
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if content_type in FORM_CONTENT_TYPES:
        form = await request.form()
        data, files = {}, {}
        for key, value in form.multi_items():
            if key in file_fields:
                if isinstance(value, StarletteUploadFile) and has_file(value):
                    files[key] = value
                continue
            if isinstance(value, StarletteUploadFile):
                raise ApiError(f"Unexpected file field '{key}'", 400)
            _assign(data, key, value)
        return data, files

    body = await request.body()
    if not body.strip():
        return {}, {}
    if content_type != "application/json":
        raise ApiError("Unsupported content type; send JSON or multipart/form-data", 415)
    try:
        data = json.loads(body)
    except ValueError:
        raise ApiError("Malformed JSON body", 400)
    if not isinstance(data, dict):
        raise ApiError("Request body must be a JSON object", 400)
    return data, {}
