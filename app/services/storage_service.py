"""
Storage Service - media uploads to Cloudinary.

Avatars, resumes and company logos are stored remotely; documents keep
only the returned secure URL and public id.
"""

import io
import logging
from typing import Optional, Tuple

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from app.core.config import get_settings
from app.core.errors import ApiError

logger = logging.getLogger(__name__)

_configured = False


def _configure() -> None:
    global _configured
    if _configured:
        return
    settings = get_settings()
    cloudinary.config(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        secure=True,
    )
    _configured = True


def folder_for(*parts) -> str:
    """e.g. folder_for("avatars", user_id) -> "jobportal/avatars/<id>"."""
    return "/".join([get_settings().cloudinary_folder] + [str(p) for p in parts])


def upload_file(
    content: bytes,
    folder: str,
    resource_type: str = "image",
    transformation: Optional[list] = None,
    failure_message: str = "Failed to upload file",
) -> Tuple[str, str]:
    """
    Upload bytes and return (secure_url, public_id).

    Raises:
        ApiError 500 when the provider rejects the upload
    """
    _configure()
    options = {"folder": folder, "resource_type": resource_type}
    if transformation:
        options["transformation"] = transformation

    try:
        result = cloudinary.uploader.upload(io.BytesIO(content), **options)
    except (CloudinaryError, OSError) as e:
        logger.error("Cloudinary upload to %s failed: %s", folder, e)
        raise ApiError(failure_message, 500)

    url = result.get("secure_url") or result.get("url")
    public_id = result.get("public_id")
    if not url or not public_id:
        logger.error("Cloudinary upload to %s returned no url/public_id", folder)
        raise ApiError(failure_message, 500)
    return url, public_id


def delete_file(public_id: Optional[str], resource_type: str = "image") -> None:
    """Best-effort delete; failures are logged and swallowed."""
    if not public_id:
        return
    _configure()
    try:
        cloudinary.uploader.destroy(public_id, resource_type=resource_type)
    except (CloudinaryError, OSError) as e:
        logger.warning("Cloudinary delete of %s failed: %s", public_id, e)
