"""Image storage service for the chat relay.

Handles validation, storage and thumbnailing of uploaded images.
Files are stored in:
    {upload_dir}/full/{uuid}.{ext}    original upload
    {upload_dir}/thumbs/{uuid}.{ext}  pixelated thumbnail

The thumbnail is produced by shrinking the image to one pixel per block and
blowing it back up with nearest-neighbour resampling, which gives the blocky
preview clients show before the full image is opened.
"""
import io
import logging
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .schemas import ALLOWED_IMAGE_FORMATS, ALLOWED_MIME_TYPES, StoredImage

logger = logging.getLogger(__name__)


class UploadRejected(ValueError):
    """The upload is not an acceptable image (client error)."""


def pixelate(image: Image.Image, width: int, block_size: int) -> Image.Image:
    """Return a pixelated copy of *image* at most *width* pixels wide.

    Args:
        image: Source image (not modified).
        width: Maximum width of the result; smaller images keep their width.
        block_size: Edge length in pixels of each visible block.
    """
    target_w = max(1, min(width, image.width))
    target_h = max(1, round(image.height * target_w / image.width))
    block_size = max(1, block_size)
    small = image.resize(
        (max(1, target_w // block_size), max(1, target_h // block_size)),
        Image.Resampling.BILINEAR,
    )
    return small.resize((target_w, target_h), Image.Resampling.NEAREST)


class MediaStorageService:
    """Service for storing uploaded images and their thumbnails."""

    def __init__(
        self,
        upload_dir: str = "uploads",
        url_prefix: str = "/uploads",
        max_bytes: int = 5 * 1024 * 1024,
        thumb_width: int = 320,
        pixel_size: int = 8,
    ) -> None:
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes
        self.thumb_width = thumb_width
        self.pixel_size = pixel_size
        self._ensure_upload_dirs()

    @property
    def full_dir(self) -> Path:
        return self.upload_dir / "full"

    @property
    def thumb_dir(self) -> Path:
        return self.upload_dir / "thumbs"

    def _ensure_upload_dirs(self) -> None:
        """Ensure the upload directories exist."""
        self.full_dir.mkdir(parents=True, exist_ok=True)
        self.thumb_dir.mkdir(parents=True, exist_ok=True)

    def full_url(self, stored: StoredImage) -> str:
        return f"{self.url_prefix}/full/{stored.full_filename}"

    def thumb_url(self, stored: StoredImage) -> str:
        return f"{self.url_prefix}/thumbs/{stored.thumb_filename}"

    async def save_image(
        self,
        filename: str,
        content: bytes,
        declared_mime: str = "",
    ) -> StoredImage:
        """Validate an uploaded image, store it and write its thumbnail.

        Args:
            filename: Original filename (only kept as metadata).
            content: Raw upload bytes.
            declared_mime: Content-Type sent by the client.

        Returns:
            StoredImage describing both files.

        Raises:
            UploadRejected: Empty, oversized, or not a PNG/JPEG image.
            OSError: If writing to disk fails.
        """
        size_bytes = len(content)
        if size_bytes == 0:
            raise UploadRejected("No se recibió ninguna imagen")
        if size_bytes > self.max_bytes:
            raise UploadRejected(
                f"La imagen ({size_bytes} bytes) supera el límite de {self.max_bytes} bytes"
            )
        if declared_mime and declared_mime not in ALLOWED_MIME_TYPES:
            raise UploadRejected(f"Tipo de archivo no permitido: {declared_mime}")

        try:
            with Image.open(io.BytesIO(content)) as image:
                image.load()
                image_format = image.format
                if image_format not in ALLOWED_IMAGE_FORMATS:
                    raise UploadRejected(f"Formato de imagen no permitido: {image_format}")
                mime_type, ext = ALLOWED_IMAGE_FORMATS[image_format]
                thumbnail = pixelate(image, self.thumb_width, self.pixel_size)
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise UploadRejected("El archivo no es una imagen válida") from e

        if image_format == "JPEG" and thumbnail.mode not in ("RGB", "L"):
            thumbnail = thumbnail.convert("RGB")

        image_id = uuid.uuid4().hex
        stored = StoredImage(
            id=image_id,
            full_filename=f"{image_id}{ext}",
            thumb_filename=f"{image_id}{ext}",
            mime_type=mime_type,
            size_bytes=size_bytes,
            original_filename=filename,
        )

        self._ensure_upload_dirs()
        (self.full_dir / stored.full_filename).write_bytes(content)
        thumbnail.save(self.thumb_dir / stored.thumb_filename, format=image_format)

        logger.info(
            f"[Upload] Saved image {stored.full_filename} ({size_bytes} bytes) "
            f"with {thumbnail.width}x{thumbnail.height} thumbnail"
        )
        return stored
