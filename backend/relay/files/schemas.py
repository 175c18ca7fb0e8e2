"""Pydantic schemas for image uploads.

Only PNG and JPEG images are accepted. Each upload produces two files:
the original image and a pixelated thumbnail, both named by a UUID so that
client-supplied filenames never reach the disk.
"""
import uuid
from typing import Dict

from pydantic import BaseModel, Field

# Pillow format name -> (MIME type, file extension)
ALLOWED_IMAGE_FORMATS: Dict[str, tuple] = {
    "PNG": ("image/png", ".png"),
    "JPEG": ("image/jpeg", ".jpg"),
}

ALLOWED_MIME_TYPES = {mime for mime, _ in ALLOWED_IMAGE_FORMATS.values()} | {"image/jpg"}


class StoredImage(BaseModel):
    """An uploaded image and its thumbnail as written to disk."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Image ID")
    full_filename: str = Field(..., description="Filename of the full-size image")
    thumb_filename: str = Field(..., description="Filename of the pixelated thumbnail")
    mime_type: str = Field(..., description="Detected MIME type")
    size_bytes: int = Field(..., description="Size of the original upload")
    original_filename: str = Field(default="", description="Client-side filename")


class UploadResponse(BaseModel):
    """Body returned by POST /upload.

    The media fields can be sent back unchanged in a ``mensaje`` event.
    """
    urlFull: str
    urlThumb: str
    fecha: str
    mimeType: str
    byteSize: int
    originalName: str
