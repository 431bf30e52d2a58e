from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from openai import APIError, APIStatusError

from moral_story_maker.backend.adapters.text_adapter import get_client
from moral_story_maker.common.config import (
    IMAGE_MODEL,
    RUNWARE_API_KEY,
    RUNWARE_MODEL,
    RUNWARE_URL,
)
from moral_story_maker.common.errors import UpstreamGenerationError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import IMAGE_PROVIDER_KEY

log = get_logger(__name__)

OPENAI = "openai"
RUNWARE = "runware"

SAFE_PREFIX = "Create a safe, family-friendly illustration: "
OPENAI_SAFE_SUFFIX = (
    ". The image should be suitable for all ages and avoid any inappropriate content."
)
OPENAI_SIZES = {"16:9": "1792x1024", "9:16": "1024x1792"}
RUNWARE_SIZES = {"16:9": (1024, 576), "9:16": (576, 1024)}


@dataclass
class GeneratedImage:
    """Either a URL to fetch or inline bytes, depending on the provider."""

    url: Optional[str] = None
    data: Optional[bytes] = None


async def select_provider(db: Any) -> str:
    """Runware when the provider config row is active, otherwise OpenAI."""
    config = await db.get_api_config(IMAGE_PROVIDER_KEY)
    return RUNWARE if config and config.get("is_active") else OPENAI


def safe_image_prompt(prompt: str) -> str:
    return f"{SAFE_PREFIX}{prompt.strip()}"


async def _generate_openai(prompt: str, aspect_ratio: str) -> GeneratedImage:
    try:
        img = await get_client().images.generate(
            model=IMAGE_MODEL,
            prompt=safe_image_prompt(prompt) + OPENAI_SAFE_SUFFIX,
            n=1,
            size=OPENAI_SIZES.get(aspect_ratio, "1024x1024"),
            quality="standard",
        )
    except APIStatusError as e:
        raise UpstreamGenerationError(
            f"OpenAI Images API error ({e.status_code}): {e.message}"
        ) from e
    except APIError as e:
        raise UpstreamGenerationError(f"OpenAI Images API error: {e}") from e

    if img.data:
        data0 = img.data[0]
        if getattr(data0, "url", None):
            return GeneratedImage(url=data0.url)
        if getattr(data0, "b64_json", None):
            return GeneratedImage(data=base64.b64decode(data0.b64_json))
    raise UpstreamGenerationError(f"Image API returned no data for model '{IMAGE_MODEL}'.")


async def _generate_runware(
    prompt: str,
    aspect_ratio: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GeneratedImage:
    if not RUNWARE_API_KEY:
        raise UpstreamGenerationError("Runware API key not configured")
    width, height = RUNWARE_SIZES.get(aspect_ratio, RUNWARE_SIZES["9:16"])
    tasks = [
        {"taskType": "authentication", "apiKey": RUNWARE_API_KEY},
        {
            "taskType": "imageInference",
            "taskUUID": str(uuid.uuid4()),
            "positivePrompt": safe_image_prompt(prompt),
            "model": RUNWARE_MODEL,
            "width": width,
            "height": height,
            "numberResults": 1,
            "outputFormat": "WEBP",
            "steps": 4,
            "CFGScale": 1,
            "scheduler": "FlowMatchEulerDiscreteScheduler",
            "strength": 0.8,
        },
    ]
    try:
        async with httpx.AsyncClient(timeout=120, transport=transport) as client:
            resp = await client.post(RUNWARE_URL, json=tasks)
        payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise UpstreamGenerationError(f"Runware request failed: {e}") from e

    if not isinstance(payload, dict):
        raise UpstreamGenerationError("Runware returned a malformed payload.")
    errors = payload.get("errors") or payload.get("error")
    if resp.status_code >= 400 or errors:
        raise UpstreamGenerationError(
            f"Failed to generate image with Runware: {errors or resp.status_code}"
        )
    for item in payload.get("data") or []:
        if isinstance(item, dict) and item.get("imageURL"):
            return GeneratedImage(url=item["imageURL"])
    raise UpstreamGenerationError("Failed to generate image with Runware: no imageURL")


async def generate_image(prompt: str, *, aspect_ratio: str, provider: str) -> GeneratedImage:
    if not (prompt or "").strip():
        raise UpstreamGenerationError("Image prompt is empty.")
    log.info("Generating {} image via {}", aspect_ratio, provider)
    if provider == RUNWARE:
        return await _generate_runware(prompt, aspect_ratio)
    return await _generate_openai(prompt, aspect_ratio)
