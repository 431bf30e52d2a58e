from __future__ import annotations

import io
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from moral_story_maker.common.errors import DownloadError


async def fetch_bytes(
    url: str,
    *,
    timeout: float = 60,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bytes:
    """Download ``url`` into memory; any failure is a DownloadError."""
    if not url:
        raise DownloadError("No URL to download.")
    try:
        async with httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True
        ) as client:
            resp = await client.get(url)
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download {url}: {e}") from e
    if resp.status_code != 200:
        raise DownloadError(f"Failed to download {url}: HTTP {resp.status_code}")
    if not resp.content:
        raise DownloadError(f"Failed to download {url}: empty body")
    return resp.content


def normalize_image_png(data: bytes) -> bytes:
    """Re-encode any Pillow-readable image (WEBP from Runware, PNG from OpenAI) as PNG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format == "PNG":
                return data
            out = io.BytesIO()
            img.convert("RGB").save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise DownloadError(f"Downloaded image is not readable: {e}") from e
