"""FastAPI router for image uploads.

Endpoints:
    POST /upload - Store an image and its pixelated thumbnail

The upload is guarded by the same shared secret as the chat, sent in the
``x-chat-key`` header. The returned URLs are then published by the client as
a media ``mensaje`` over the WebSocket.
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse

from relay.chat.normalizer import default_timestamp

from .schemas import UploadResponse
from .service import MediaStorageService, UploadRejected

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


def get_media_service(request: Request) -> MediaStorageService:
    return request.app.state.media


def _key_matches(provided: Optional[str], secret: str) -> bool:
    if not provided or not secret:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


@router.post("/upload", response_model=UploadResponse)
async def upload_image(
    request: Request,
    imagen: Optional[UploadFile] = File(None),
    x_chat_key: Optional[str] = Header(None),
):
    """Upload a PNG or JPEG image to share in the chat.

    Args:
        imagen: The image file (multipart field ``imagen``).
        x_chat_key: Shared chat secret (``x-chat-key`` header).

    Returns:
        UploadResponse with full and thumbnail URLs.

    Errors (JSON ``{error}``):
        401: Missing or wrong ``x-chat-key``.
        400: No file, empty, oversized, or not a PNG/JPEG image.
        500: The image could not be processed or stored.
    """
    secret = request.app.state.config.shared_secret
    if not _key_matches(x_chat_key, secret):
        logger.warning("[Upload] Rejected upload with missing or wrong x-chat-key")
        return JSONResponse({"error": "No autorizado"}, status_code=401)

    if imagen is None:
        return JSONResponse({"error": "No se recibió ninguna imagen"}, status_code=400)

    service = get_media_service(request)
    try:
        content = await imagen.read()
        stored = await service.save_image(
            filename=imagen.filename or "imagen",
            content=content,
            declared_mime=imagen.content_type or "",
        )
    except UploadRejected as e:
        logger.info(f"[Upload] Rejected: {e}")
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error(f"[Upload] Failed to process image: {e}")
        return JSONResponse({"error": "Error procesando la imagen"}, status_code=500)

    return UploadResponse(
        urlFull=service.full_url(stored),
        urlThumb=service.thumb_url(stored),
        fecha=default_timestamp(),
        mimeType=stored.mime_type,
        byteSize=stored.size_bytes,
        originalName=stored.original_filename,
    )
