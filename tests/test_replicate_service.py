"""Tests for the Replicate-backed illustration service."""

from __future__ import annotations

import io
from unittest.mock import Mock, patch

import pytest
import requests
from replicate.exceptions import ReplicateError

from colorbook.ai_generation.replicate_service import (
    DEFAULT_MODEL,
    IllustrationService,
    ReplicateIllustrationService,
    classify_service_error,
)
from colorbook.common.errors import (
    IllustrationServiceError,
    ModerationBlocked,
    RateLimited,
    TransientServiceError,
)

from .conftest import make_png


class StatusError(Exception):
    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


class TestClassifyServiceError:
    def test_moderation_markers(self):
        error = classify_service_error(Exception("Output flagged as NSFW"), prompt="scene")

        assert isinstance(error, ModerationBlocked)
        assert error.prompt == "scene"

    def test_rate_limits(self):
        assert isinstance(classify_service_error(StatusError("slow down", 429)), RateLimited)
        assert isinstance(classify_service_error(Exception("Too Many Requests")), RateLimited)

    def test_client_errors_are_permanent(self):
        error = classify_service_error(ReplicateError(status=422, detail="Invalid input image"))

        assert type(error) is IllustrationServiceError

    def test_unknown_errors_are_transient(self):
        assert isinstance(classify_service_error(ConnectionResetError("reset by peer")), TransientServiceError)

    def test_classified_errors_pass_through(self):
        original = RateLimited("quota")

        assert classify_service_error(original) is original


class TestReplicateIllustrationService:
    def test_requires_token_or_client(self, monkeypatch):
        monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)

        with pytest.raises(ValueError):
            ReplicateIllustrationService()

    def test_model_falls_back_to_default(self, monkeypatch):
        monkeypatch.delenv("REPLICATE_MODEL", raising=False)
        service = ReplicateIllustrationService(client=Mock())

        assert service.model_identifier == DEFAULT_MODEL
        assert isinstance(service, IllustrationService)

    @pytest.mark.asyncio
    async def test_file_output_is_read(self):
        page = make_png((20, 30))
        client = Mock()
        client.run.return_value = [io.BytesIO(page)]
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        result = await service.synthesize("flying a kite", make_png((8, 8)), detail_level="2")

        assert result == page
        model, = client.run.call_args.args
        payload = client.run.call_args.kwargs["input"]
        assert model == DEFAULT_MODEL
        assert "flying a kite" in payload["prompt"]
        assert payload["output_format"] == "png"

    @pytest.mark.asyncio
    async def test_url_output_is_downloaded(self):
        page = make_png((20, 30))
        client = Mock()
        client.run.return_value = "https://replicate.delivery/out.png"
        response = Mock(content=page)
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        with patch("colorbook.ai_generation.replicate_service.requests.get", return_value=response) as get:
            result = await service.synthesize("reading a book", b"ref")

        assert result == page
        get.assert_called_once()

    @pytest.mark.asyncio
    async def test_download_failure_is_transient(self):
        client = Mock()
        client.run.return_value = "https://replicate.delivery/out.png"
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        with patch("colorbook.ai_generation.replicate_service._download", side_effect=requests.ConnectionError("down")):
            with pytest.raises(TransientServiceError):
                await service.synthesize("reading a book", b"ref")

    @pytest.mark.asyncio
    async def test_non_image_output_is_transient(self):
        client = Mock()
        client.run.return_value = [b"plain text"]
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        with pytest.raises(TransientServiceError):
            await service.synthesize("reading a book", b"ref")

    @pytest.mark.asyncio
    async def test_client_errors_are_classified(self):
        client = Mock()
        client.run.side_effect = Exception("Prediction failed: content policy violation")
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        with pytest.raises(ModerationBlocked) as excinfo:
            await service.synthesize("at the beach", b"ref")

        assert excinfo.value.prompt == "at the beach"

    @pytest.mark.asyncio
    async def test_unsupported_model_is_a_permanent_error(self):
        client = Mock()
        service = ReplicateIllustrationService(client=client, model_identifier="someone/unknown-model")

        with pytest.raises(IllustrationServiceError) as excinfo:
            await service.synthesize("at the beach", b"ref")

        assert type(excinfo.value) is IllustrationServiceError
        assert isinstance(excinfo.value.__cause__, ValueError)
        client.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreadable_file_output_is_transient(self):
        output = Mock()
        output.read.side_effect = OSError("stream closed")
        client = Mock()
        client.run.return_value = [output]
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        with pytest.raises(TransientServiceError) as excinfo:
            await service.synthesize("at the beach", b"ref")

        assert excinfo.value.prompt == "at the beach"

    @pytest.mark.asyncio
    async def test_cover_request_uses_cover_directions(self):
        client = Mock()
        client.run.return_value = [io.BytesIO(make_png((20, 30)))]
        service = ReplicateIllustrationService(client=client, model_identifier=DEFAULT_MODEL)

        await service.synthesize("at the beach", b"ref", cover=True)

        prompt = client.run.call_args.kwargs["input"]["prompt"]
        assert "COVER" in prompt
        assert "stars, swirls and flowers" in prompt
        assert "SCENE" not in prompt
