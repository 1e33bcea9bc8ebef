"""Tests for image reference helpers and atomic writes."""

from __future__ import annotations

import base64
from unittest.mock import Mock, patch

import pytest

from colorbook.common.images import load_image_bytes, sniff_mime_type, to_data_url
from colorbook.common.storage import atomic_write_bytes

from .conftest import make_png


class TestLoadImageBytes:
    def test_bytes_paths_and_data_urls(self, tmp_path):
        image = make_png((8, 8))
        path = tmp_path / "ref.png"
        path.write_bytes(image)

        assert load_image_bytes(image) == image
        assert load_image_bytes(path) == image
        assert load_image_bytes(str(path)) == image
        assert load_image_bytes(to_data_url(image)) == image
        assert load_image_bytes(base64.b64encode(image).decode("ascii")) == image

    def test_http_reference_is_fetched(self):
        response = Mock(content=b"remote")
        with patch("colorbook.common.images.requests.get", return_value=response) as get:
            assert load_image_bytes("https://example.com/ref.png", timeout=5) == b"remote"

        get.assert_called_once_with("https://example.com/ref.png", timeout=5)
        response.raise_for_status.assert_called_once()

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            load_image_bytes("not/a/path/or base64!")
        with pytest.raises(ValueError):
            load_image_bytes("   ")

    def test_sniff_and_data_url_mime(self):
        png = make_png((4, 4))

        assert sniff_mime_type(png) == "image/png"
        assert sniff_mime_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
        assert sniff_mime_type(b"plain") is None
        assert to_data_url(png).startswith("data:image/png;base64,")


class TestAtomicWrite:
    def test_replaces_file_without_leaving_temp_files(self, tmp_path):
        target = tmp_path / "nested" / "file.bin"

        atomic_write_bytes(target, b"first")
        atomic_write_bytes(target, b"second")

        assert target.read_bytes() == b"second"
        assert [path.name for path in target.parent.iterdir()] == ["file.bin"]
