from typing import Optional

import httpx

from moral_story_maker.common.config import OPENAI_API_KEY, OPENAI_BASE, TTS_MODEL
from moral_story_maker.common.errors import UpstreamGenerationError, ValidationError
from moral_story_maker.common.models import VOICE_OPTIONS

DEFAULT_VOICE = "alloy"
MAX_TTS_CHARS = 4096


async def synthesize_tts(
    text: str,
    *,
    voice: str = DEFAULT_VOICE,
    fmt: str = "mp3",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bytes:
    """
    Convert text -> speech using OpenAI TTS.
    Returns raw audio bytes (MP3 by default).
    """
    if voice not in VOICE_OPTIONS:
        raise ValidationError(f"Unknown voice '{voice}'.")
    # normalize whitespace and end on punctuation for a natural stop
    t = " ".join((text or "").strip().split())
    if not t:
        raise ValidationError("Text is required.")
    if not t.endswith((".", "!", "?")):
        t += "."
    t = t[:MAX_TTS_CHARS]
    if not OPENAI_API_KEY:
        raise UpstreamGenerationError("OPENAI_API_KEY missing. Put it in .env")
    headers = {"Authorization": f"Bearer {OPENAI_API_KEY}"}
    body = {"model": TTS_MODEL, "voice": voice, "input": t, "response_format": fmt}
    try:
        async with httpx.AsyncClient(timeout=120, transport=transport) as client:
            r = await client.post(f"{OPENAI_BASE}/audio/speech", json=body, headers=headers)
    except httpx.HTTPError as e:
        raise UpstreamGenerationError(f"TTS request failed: {e}") from e
    if r.status_code != 200:
        raise UpstreamGenerationError(f"TTS API error ({r.status_code}): {r.text}")
    return r.content  # binary audio
