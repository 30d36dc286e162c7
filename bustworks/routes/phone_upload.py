"""
Phone Upload Routes

QR-code flow: the desktop asks for a token, the phone uploads a photo under
that token, and the desktop polls until the photo shows up. The order form
then submits the token instead of a file.
"""

import logging
import re
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from starlette.datastructures import UploadFile

from ..config import get_settings
from ..schemas import PhoneUploadResponse, PhoneUploadStatusResponse, PhoneUploadTokenResponse
from ..services.storage import StorageError, StorageService, get_storage_service

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/phone-upload", tags=["phone-upload"])

PHOTO_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "heic", "heif")
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9-]{8,64}$")
PHOTO_NAME_PATTERN = re.compile(r"^photo\.(jpg|jpeg|png|webp|heic|heif)$", re.IGNORECASE)

CONTENT_TYPES = {
    "png": "image/png",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heic",
}


# ============================================================================
# Helper functions
# ============================================================================

def ext_from_name(name: str | None) -> str | None:
    """Photo extension from a file name, normalizing jpeg to jpg."""
    ext = Path(name or "").suffix.lower().lstrip(".")
    if ext not in PHOTO_EXTENSIONS:
        return None
    return "jpg" if ext == "jpeg" else ext


def ext_from_mime(mime: str | None) -> str:
    """Photo extension from a MIME type, defaulting to jpg."""
    value = (mime or "").lower()
    for ext in ("png", "webp", "heic", "heif"):
        if ext in value:
            return ext
    return "jpg"


def content_type_for(ext: str) -> str:
    return CONTENT_TYPES.get(ext.lower(), "image/jpeg")


def phone_photo_prefix(token: str) -> str:
    return f"phone/{token}/"


def validate_token(token: str) -> str:
    """Reject empty or path-unsafe tokens."""
    token = (token or "").strip()
    if not token:
        raise HTTPException(
            status_code=400,
            detail="Missing token. Please rescan the QR from your computer.",
        )
    if not TOKEN_PATTERN.match(token):
        raise HTTPException(status_code=400, detail="Invalid token")
    return token


def find_phone_photo(storage: StorageService, token: str) -> str | None:
    """Key of the photo uploaded under a token, or None if it hasn't arrived."""
    for key in storage.list_files(storage.uploads_bucket, phone_photo_prefix(token)):
        if PHOTO_NAME_PATTERN.match(key.rsplit("/", 1)[-1]):
            return key
    return None


# ============================================================================
# Routes
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def phone_upload(
    request: Request,
    response: Response,
    token: str | None = Query(default=None),
    storage: StorageService = Depends(get_storage_service),
):
    """
    Create a token (non-multipart body) or upload the phone photo (multipart).

    The photo is stored at phone/{token}/photo.{ext}, replacing any earlier one.
    """
    content_type = request.headers.get("content-type", "").lower()
    if "multipart/form-data" not in content_type:
        return PhoneUploadTokenResponse(token=str(uuid.uuid4()))

    form = await request.form()
    upload_token = validate_token(token or str(form.get("token") or ""))

    photo = form.get("photo") or form.get("file")
    if not isinstance(photo, UploadFile):
        raise HTTPException(status_code=400, detail="Please choose a photo or take one.")

    content = await photo.read()
    max_bytes = settings.max_phone_upload_size_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"Photo is too large (max {settings.max_phone_upload_size_mb}MB).",
        )

    mime = (photo.content_type or "image/jpeg").lower()
    ext = ext_from_name(photo.filename) or ext_from_mime(mime)
    key = f"{phone_photo_prefix(upload_token)}photo.{ext}"

    try:
        storage.upload_bytes(storage.uploads_bucket, key, content, mime)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

    logger.info("Phone photo received for token %s", upload_token)
    response.status_code = status.HTTP_200_OK
    return PhoneUploadResponse(
        token=upload_token,
        bucket=storage.uploads_bucket,
        path=key,
        preview_url=storage.signed_url_or_none(storage.uploads_bucket, key),
    )


@router.get("/status", response_model=PhoneUploadStatusResponse, response_model_exclude_none=True)
async def phone_upload_status(
    token: str | None = Query(default=None),
    storage: StorageService = Depends(get_storage_service),
) -> PhoneUploadStatusResponse:
    """Report whether the phone photo has been uploaded yet."""
    if not token or not token.strip():
        raise HTTPException(status_code=400, detail="Missing token")
    upload_token = validate_token(token)

    key = find_phone_photo(storage, upload_token)
    if key is None:
        return PhoneUploadStatusResponse(status="waiting", token=upload_token)

    return PhoneUploadStatusResponse(
        status="uploaded",
        token=upload_token,
        path=key,
        preview_url=storage.signed_url_or_none(storage.uploads_bucket, key),
    )
