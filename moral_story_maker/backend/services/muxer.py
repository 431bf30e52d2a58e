"""Image + audio -> MP4.

``invoke_muxer`` is the client side used by the video orchestrator;
``process_story_video`` is the service behind ``POST /process-story-video``.
"""

from __future__ import annotations

import asyncio
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from moral_story_maker.backend.services import media
from moral_story_maker.common.config import (
    FFMPEG_BIN,
    MUXER_URL,
    SUPABASE_SERVICE_ROLE_KEY,
    VIDEO_BUCKET,
)
from moral_story_maker.common.errors import MuxingError, StoryMakerError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import ASPECT_RATIOS

log = get_logger(__name__)

FRAME_SIZES = {"16:9": (1280, 720), "9:16": (720, 1280)}


async def invoke_muxer(
    *,
    image_url: str,
    audio_url: str,
    output_key: str,
    aspect_ratio: str,
    url: str = MUXER_URL,
    token: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """POST to the muxing function; the service key wins over the caller's token."""
    if not url:
        raise MuxingError("Muxing service URL is not configured (MUXER_URL).")
    headers = {"Content-Type": "application/json"}
    bearer = SUPABASE_SERVICE_ROLE_KEY or token
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    body = {
        "imageUrl": image_url,
        "audioUrl": audio_url,
        "outputFileName": output_key,
        "aspectRatio": aspect_ratio,
    }
    try:
        async with httpx.AsyncClient(timeout=300, transport=transport) as client:
            resp = await client.post(url, json=body, headers=headers)
    except httpx.HTTPError as e:
        raise MuxingError(f"FFmpeg processing failed: {e}") from e
    try:
        payload = resp.json() if resp.content else {}
    except ValueError:
        payload = {}
    if resp.status_code >= 400 or (isinstance(payload, dict) and payload.get("error")):
        detail = payload.get("error") if isinstance(payload, dict) else None
        raise MuxingError(f"FFmpeg processing failed: {detail or resp.status_code}")
    return payload if isinstance(payload, dict) else {}


def ffmpeg_command(image: Path, audio: Path, output: Path, aspect_ratio: str) -> list:
    width, height = FRAME_SIZES[aspect_ratio]
    vf = (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,format=yuv420p"
    )
    return [
        FFMPEG_BIN, "-y",
        "-loop", "1",
        "-i", str(image),
        "-i", str(audio),
        "-vf", vf,
        "-c:v", "libx264",
        "-tune", "stillimage",
        "-c:a", "aac",
        "-b:a", "192k",
        "-shortest",
        str(output),
    ]


def mux_with_ffmpeg(image: Path, audio: Path, output: Path, aspect_ratio: str) -> None:
    cmd = ffmpeg_command(image, audio, output, aspect_ratio)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise MuxingError(f"Could not run {FFMPEG_BIN}: {e}") from e
    if result.returncode != 0:
        raise MuxingError(f"FFmpeg failed: {result.stderr[-500:]}")
    if not output.exists() or output.stat().st_size == 0:
        raise MuxingError("FFmpeg produced no output.")


async def process_story_video(
    store: Any,
    *,
    image_url: str,
    audio_url: str,
    output_key: str,
    aspect_ratio: str,
) -> str:
    """Download inputs, mux them and upload ``output_key``; returns its public URL."""
    if aspect_ratio not in ASPECT_RATIOS:
        raise MuxingError(f"Unsupported aspect ratio '{aspect_ratio}'.")
    if not output_key.endswith(".mp4"):
        raise MuxingError("outputFileName must end with .mp4")

    image_bytes, audio_bytes = await asyncio.gather(
        media.fetch_bytes(image_url), media.fetch_bytes(audio_url)
    )
    with tempfile.TemporaryDirectory(prefix="mux_") as tmp:
        folder = Path(tmp)
        image, audio, output = folder / "image.png", folder / "audio.mp3", folder / "out.mp4"
        image.write_bytes(image_bytes)
        audio.write_bytes(audio_bytes)
        log.info("Muxing {} ({})", output_key, aspect_ratio)
        await asyncio.to_thread(mux_with_ffmpeg, image, audio, output, aspect_ratio)
        video = output.read_bytes()

    try:
        return await store.upload(VIDEO_BUCKET, output_key, video, "video/mp4")
    except StoryMakerError as e:
        raise MuxingError(f"Failed to store muxed video: {e.message}") from e
