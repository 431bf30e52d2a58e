"""Image provider selection and the Runware client."""

import json

import httpx
import pytest

from moral_story_maker.backend.adapters import image_adapter
from moral_story_maker.common.errors import UpstreamGenerationError


async def test_defaults_to_openai(db):
    assert await image_adapter.select_provider(db) == image_adapter.OPENAI


async def test_active_config_selects_runware(db, seed_row):
    seed_row(
        "INSERT INTO api_configurations (key_name, is_active) VALUES (?, 1)",
        ("IMAGE_GENERATION_PROVIDER",),
    )
    assert await image_adapter.select_provider(db) == image_adapter.RUNWARE


async def test_inactive_config_keeps_openai(db, seed_row):
    seed_row(
        "INSERT INTO api_configurations (key_name, is_active) VALUES (?, 0)",
        ("IMAGE_GENERATION_PROVIDER",),
    )
    assert await image_adapter.select_provider(db) == image_adapter.OPENAI


def test_safe_prompt_prefix():
    assert image_adapter.safe_image_prompt("  a fox  ") == (
        "Create a safe, family-friendly illustration: a fox"
    )


class TestRunware:
    @pytest.fixture(autouse=True)
    def api_key(self, monkeypatch):
        monkeypatch.setattr(image_adapter, "RUNWARE_API_KEY", "rw-key")

    async def test_posts_auth_and_inference_tasks(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["tasks"] = json.loads(request.read())
            return httpx.Response(
                200, json={"data": [{"taskType": "imageInference", "imageURL": "https://im.test/1.webp"}]}
            )

        image = await image_adapter._generate_runware(
            "a fox", "16:9", transport=httpx.MockTransport(handler)
        )

        assert image.url == "https://im.test/1.webp"
        auth, inference = seen["tasks"]
        assert auth == {"taskType": "authentication", "apiKey": "rw-key"}
        assert inference["positivePrompt"].startswith("Create a safe, family-friendly illustration:")
        assert (inference["width"], inference["height"]) == (1024, 576)
        assert inference["outputFormat"] == "WEBP"

    @pytest.mark.parametrize(
        "status, payload",
        [
            (200, {"errors": [{"message": "invalid apiKey"}]}),
            (500, {"data": []}),
            (200, {"data": [{"taskType": "imageInference"}]}),
            (200, ["not", "a", "dict"]),
        ],
    )
    async def test_failures_raise(self, status, payload):
        transport = httpx.MockTransport(lambda request: httpx.Response(status, json=payload))
        with pytest.raises(UpstreamGenerationError):
            await image_adapter._generate_runware("a fox", "9:16", transport=transport)

    async def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(image_adapter, "RUNWARE_API_KEY", "")
        with pytest.raises(UpstreamGenerationError, match="not configured"):
            await image_adapter._generate_runware("a fox", "9:16")


async def test_empty_prompt_rejected():
    with pytest.raises(UpstreamGenerationError):
        await image_adapter.generate_image("  ", aspect_ratio="16:9", provider=image_adapter.OPENAI)
