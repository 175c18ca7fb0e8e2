"""Tests for image uploads and pixelated thumbnails."""
import io
from pathlib import Path

import pytest
from PIL import Image

from relay.files.service import MediaStorageService, UploadRejected, pixelate

SECRET = "Linux"


def image_bytes(size=(64, 48), image_format="PNG", mode="RGB") -> bytes:
    """Encode a horizontal gradient so pixelation is visible."""
    image = Image.new(mode, size)
    for x in range(size[0]):
        for y in range(size[1]):
            value = (x * 255) // max(1, size[0] - 1)
            image.putpixel((x, y), (value, 255 - value, 128) if mode == "RGB" else (value, 0, 0, 255))
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


def upload(client, content, filename="gato.png", content_type="image/png", key=SECRET):
    headers = {"x-chat-key": key} if key is not None else {}
    return client.post(
        "/upload",
        files={"imagen": (filename, content, content_type)},
        headers=headers,
    )


class TestUploadEndpoint:
    def test_png_upload(self, api_client, relay_config):
        content = image_bytes()
        response = upload(api_client, content)

        assert response.status_code == 200
        body = response.json()
        assert body["urlFull"].startswith("/uploads/full/")
        assert body["urlThumb"].startswith("/uploads/thumbs/")
        assert body["urlFull"].endswith(".png")
        assert body["mimeType"] == "image/png"
        assert body["byteSize"] == len(content)
        assert body["originalName"] == "gato.png"
        assert body["fecha"]

        upload_dir = Path(relay_config.uploads.upload_dir)
        assert (upload_dir / "full" / body["urlFull"].rsplit("/", 1)[1]).read_bytes() == content
        assert (upload_dir / "thumbs" / body["urlThumb"].rsplit("/", 1)[1]).exists()

    def test_uploaded_files_are_served(self, api_client):
        content = image_bytes()
        body = upload(api_client, content).json()

        full = api_client.get(body["urlFull"])
        assert full.status_code == 200
        assert full.content == content
        assert api_client.get(body["urlThumb"]).status_code == 200

    def test_jpeg_upload(self, api_client):
        response = upload(api_client, image_bytes(image_format="JPEG"), "foto.jpeg", "image/jpeg")
        assert response.status_code == 200
        assert response.json()["mimeType"] == "image/jpeg"
        assert response.json()["urlFull"].endswith(".jpg")

    @pytest.mark.parametrize("key", [None, "", "wrong"])
    def test_missing_or_wrong_key_is_unauthorized(self, api_client, key):
        response = upload(api_client, image_bytes(), key=key)
        assert response.status_code == 401
        assert response.json() == {"error": "No autorizado"}

    def test_missing_file(self, api_client):
        response = api_client.post("/upload", headers={"x-chat-key": SECRET})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_not_an_image(self, api_client):
        response = upload(api_client, b"definitely not a png", "fake.png", "image/png")
        assert response.status_code == 400

    def test_disallowed_declared_type(self, api_client):
        response = upload(api_client, image_bytes(image_format="GIF", mode="RGB"), "anim.gif", "image/gif")
        assert response.status_code == 400

    def test_disallowed_real_format(self, api_client):
        response = upload(api_client, image_bytes(image_format="GIF", mode="RGB"), "anim.png", "image/png")
        assert response.status_code == 400
        assert "GIF" in response.json()["error"]

    def test_storage_failure_is_a_server_error(self, api_client, monkeypatch):
        def explode(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(Path, "write_bytes", explode)
        response = upload(api_client, image_bytes())
        assert response.status_code == 500
        assert response.json() == {"error": "Error procesando la imagen"}


class TestMediaStorageService:
    @pytest.fixture
    def service(self, tmp_path):
        return MediaStorageService(upload_dir=str(tmp_path), max_bytes=200_000, thumb_width=320, pixel_size=8)

    @pytest.mark.asyncio
    async def test_thumbnail_is_bounded_and_blocky(self, service):
        stored = await service.save_image("big.png", image_bytes(size=(640, 480)), "image/png")

        with Image.open(service.thumb_dir / stored.thumb_filename) as thumb:
            assert thumb.size == (320, 240)
            # Each 8x8 block is a single colour
            assert thumb.getpixel((0, 0)) == thumb.getpixel((7, 7))
            assert thumb.getpixel((8, 0)) == thumb.getpixel((15, 7))

    @pytest.mark.asyncio
    async def test_small_image_keeps_its_width(self, service):
        stored = await service.save_image("small.png", image_bytes(size=(40, 20)), "image/png")
        with Image.open(service.thumb_dir / stored.thumb_filename) as thumb:
            assert thumb.size == (40, 20)

    @pytest.mark.asyncio
    async def test_stored_names_ignore_client_filename(self, service):
        stored = await service.save_image("../../etc/passwd.png", image_bytes(), "image/png")
        assert "/" not in stored.full_filename
        assert stored.full_filename == f"{stored.id}.png"
        assert stored.original_filename == "../../etc/passwd.png"
        assert service.full_url(stored) == f"/uploads/full/{stored.id}.png"

    @pytest.mark.asyncio
    async def test_rejects_empty_upload(self, service):
        with pytest.raises(UploadRejected):
            await service.save_image("empty.png", b"", "image/png")

    @pytest.mark.asyncio
    async def test_rejects_oversized_upload(self, tmp_path):
        service = MediaStorageService(upload_dir=str(tmp_path), max_bytes=100)
        with pytest.raises(UploadRejected):
            await service.save_image("big.png", image_bytes(), "image/png")

    @pytest.mark.asyncio
    async def test_rgba_png_thumbnail(self, service):
        stored = await service.save_image("alpha.png", image_bytes(mode="RGBA"), "image/png")
        assert (service.thumb_dir / stored.thumb_filename).exists()


def test_pixelate_does_not_modify_source():
    source = Image.new("RGB", (100, 50), (10, 20, 30))
    result = pixelate(source, width=50, block_size=10)
    assert source.size == (100, 50)
    assert result.size == (50, 25)
