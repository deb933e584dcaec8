"""
Tests for image_store.py.

Covers:
  - ImageUpload mime sniffing and from_path
  - DataUriImageStore: data: URI round-trip, put_many keeps order
  - ImageValidationError carries a code
"""
from __future__ import annotations

import pytest

from image_store import DataUriImageStore, ImageUpload, ImageValidationError
from providers.base import split_data_uri

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG = b"\xff\xd8\xff\xe0" + b"\x01" * 16


class TestImageUpload:
    def test_mime_sniffed(self):
        assert ImageUpload(PNG).mime_type == "image/png"
        assert ImageUpload(JPEG).mime_type == "image/jpeg"

    def test_explicit_mime_kept(self):
        assert ImageUpload(JPEG, mime_type="image/webp").mime_type == "image/webp"

    def test_from_path(self, tmp_path):
        path = tmp_path / "photo.png"
        path.write_bytes(PNG)
        upload = ImageUpload.from_path(str(path))
        assert upload.data == PNG
        assert upload.mime_type == "image/png"
        assert upload.filename == str(path)


@pytest.mark.asyncio
class TestDataUriStore:
    async def test_put_roundtrip(self):
        url = await DataUriImageStore().put(ImageUpload(PNG))
        assert url.startswith("data:image/png;base64,")
        assert split_data_uri(url) == ("image/png", PNG)

    async def test_put_many_preserves_order(self):
        urls = await DataUriImageStore().put_many([ImageUpload(PNG), ImageUpload(JPEG)])
        assert [split_data_uri(u)[1] for u in urls] == [PNG, JPEG]


class TestImageValidationError:
    def test_code_and_message(self):
        err = ImageValidationError("too_many_images", "Maximum 5 images allowed")
        assert err.code == "too_many_images"
        assert str(err) == "Maximum 5 images allowed"
        assert isinstance(err, ValueError)
