"""Story -> narrated still-image video.

One call runs the whole pipeline; nothing is queued or retried. Temporary
objects written to the video bucket are removed whatever the outcome.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, List, Optional

from moral_story_maker.backend.adapters import image_adapter
from moral_story_maker.backend.services import media, muxer
from moral_story_maker.common.config import VIDEO_BUCKET
from moral_story_maker.common.errors import (
    AuthenticationRequired,
    MuxingError,
    NotFound,
    ValidationError,
)
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import ASPECT_RATIOS, Story

log = get_logger(__name__)

VIDEO_PROMPT_TEMPLATE = (
    "Create a high-quality, detailed illustration suitable for a children's storybook. "
    "Style: Use vibrant colors and a mix of 3D rendering and artistic illustration "
    "techniques. The image should be engaging and magical, without any text overlays. "
    "Focus on creating an emotional and immersive scene. Specific scene: {scene}. "
    "Important: Do not include any text or words in the image."
)
FALLBACK_SCENE = "a warm, magical storybook landscape with friendly characters"
MAX_SCENE_CHARS = 1000


def scene_for(story: Story) -> str:
    if (story.image_prompt or "").strip():
        return story.image_prompt.strip()
    body = " ".join((story.content or "").split())
    if body:
        return f"Create a storybook illustration for this story: {body[:MAX_SCENE_CHARS]}"
    if (story.title or "").strip():
        return f"Create a storybook illustration for a story titled {story.title.strip()}"
    return FALLBACK_SCENE


def build_video_image_prompt(story: Story) -> str:
    return VIDEO_PROMPT_TEMPLATE.format(scene=scene_for(story))


async def _cleanup(store: Any, keys: List[str], story_id: str) -> None:
    if not keys:
        return
    results = await asyncio.gather(
        *(store.delete(VIDEO_BUCKET, [key]) for key in keys), return_exceptions=True
    )
    for key, result in zip(keys, results):
        if isinstance(result, Exception):
            log.warning("Failed to delete temporary object {} for story {}: {}", key, story_id, result)


async def generate_story_video(
    *,
    db: Any,
    store: Any,
    user_id: str,
    story_id: str,
    aspect_ratio: str,
    audio_url: str,
    auth_token: Optional[str] = None,
) -> str:
    if not user_id:
        raise AuthenticationRequired("No authorization header")
    if aspect_ratio not in ASPECT_RATIOS:
        raise ValidationError(f"aspectRatio must be one of {', '.join(ASPECT_RATIOS)}")
    if not audio_url:
        raise ValidationError("audioUrl is required")

    story = await db.get_story(story_id)
    if story is None:
        raise NotFound(f"Story {story_id} not found")

    slog = log.bind(story_id=story_id, user_id=user_id)
    slog.info("Starting video generation ({})", aspect_ratio)

    provider = await image_adapter.select_provider(db)
    image = await image_adapter.generate_image(
        build_video_image_prompt(story), aspect_ratio=aspect_ratio, provider=provider
    )

    if image.data is not None:
        image_bytes = image.data
        audio_bytes = await media.fetch_bytes(audio_url)
    else:
        image_bytes, audio_bytes = await asyncio.gather(
            media.fetch_bytes(image.url), media.fetch_bytes(audio_url)
        )
    image_bytes = media.normalize_image_png(image_bytes)

    image_key = f"temp_{uuid.uuid4()}.png"
    audio_key = f"temp_{uuid.uuid4()}.mp3"
    video_key = f"{uuid.uuid4()}.mp4"
    created: List[str] = []
    try:
        await store.upload(VIDEO_BUCKET, image_key, image_bytes, "image/png")
        created.append(image_key)
        await store.upload(VIDEO_BUCKET, audio_key, audio_bytes, "audio/mpeg")
        created.append(audio_key)

        slog.info("Muxing video {}", video_key)
        try:
            await muxer.invoke_muxer(
                image_url=store.public_url(VIDEO_BUCKET, image_key),
                audio_url=store.public_url(VIDEO_BUCKET, audio_key),
                output_key=video_key,
                aspect_ratio=aspect_ratio,
                token=auth_token,
            )
        except MuxingError:
            raise
        except Exception as e:
            raise MuxingError(f"FFmpeg processing failed: {e}") from e

        video_url = store.public_url(VIDEO_BUCKET, video_key)
    finally:
        await _cleanup(store, created, story_id)

    slog.info("Video generation completed: {}", video_url)
    return video_url
