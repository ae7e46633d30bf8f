# tests/test_avatar_service.py
"""Unit tests for the avatar generation client (OpenAI client mocked)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import openai
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from kiosk.services.avatar_service import (
    AVATAR_PROMPTS,
    BASE_PROMPT,
    AvatarGenerator,
    AvatarStyle,
    build_prompt,
)


def mock_client(b64="YXZhdGFy", side_effect=None):
    client = MagicMock()
    client.images.edit = AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(b64_json=b64)]),
        side_effect=side_effect,
    )
    return client


class TestStyles:
    def test_every_style_has_a_prompt(self):
        assert set(AVATAR_PROMPTS) == set(AvatarStyle)

    @pytest.mark.parametrize("value", ["oil-painting", "", None, "ANIME"])
    def test_unknown_style_falls_back_to_glam(self, value):
        assert AvatarStyle.parse(value) is AvatarStyle.GLAM_80S

    def test_known_style(self):
        assert AvatarStyle.parse("anime") is AvatarStyle.ANIME

    def test_prompt_includes_base_instructions(self):
        prompt = build_prompt("photo-shoot")
        assert prompt.startswith(AVATAR_PROMPTS[AvatarStyle.PHOTO_SHOOT])
        assert BASE_PROMPT in prompt


class TestGenerate:
    @pytest.mark.asyncio
    async def test_returns_base64(self, png_data_url):
        client = mock_client()
        generator = AvatarGenerator(client, model="gpt-image-1")

        result = await generator.generate(png_data_url(), "Ada", "anime")

        assert result == "YXZhdGFy"
        kwargs = client.images.edit.call_args[1]
        assert kwargs["model"] == "gpt-image-1"
        assert kwargs["quality"] == "low"
        assert kwargs["background"] == "transparent"
        assert kwargs["size"] == "1024x1024"
        assert kwargs["prompt"] == build_prompt(AvatarStyle.ANIME)
        filename, data, mime = kwargs["image"]
        assert mime == "image/png"
        assert data.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_unknown_style_uses_glam_prompt(self, png_data_url):
        client = mock_client()
        await AvatarGenerator(client).generate(png_data_url(), "Ada", "watercolour")
        assert client.images.edit.call_args[1]["prompt"] == build_prompt(AvatarStyle.GLAM_80S)

    @pytest.mark.asyncio
    async def test_no_client_returns_none(self, png_data_url):
        assert await AvatarGenerator(None).generate(png_data_url()) is None

    @pytest.mark.asyncio
    async def test_upstream_error_returns_none(self, png_data_url):
        client = mock_client(side_effect=openai.OpenAIError("rate limited"))
        assert await AvatarGenerator(client).generate(png_data_url()) is None

    @pytest.mark.asyncio
    async def test_empty_response_returns_none(self, png_data_url):
        client = mock_client(b64=None)
        assert await AvatarGenerator(client).generate(png_data_url()) is None

    @pytest.mark.asyncio
    async def test_unreadable_photo_returns_none(self):
        client = mock_client()
        assert await AvatarGenerator(client).generate("not-an-image") is None
        client.images.edit.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_photo_fetched_with_http_client(self):
        http = MagicMock()
        http.get = AsyncMock(return_value=MagicMock(content=b"\x89PNGdata", raise_for_status=MagicMock()))
        client = mock_client()

        await AvatarGenerator(client, http=http).generate("https://cdn.example.com/p.jpg")

        http.get.assert_awaited_once_with("https://cdn.example.com/p.jpg")
        assert client.images.edit.call_args[1]["image"][1] == b"\x89PNGdata"
