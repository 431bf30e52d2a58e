from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def repo_root() -> Path:
    # <repo>/moral_story_maker/common/config.py
    return Path(__file__).resolve().parents[2]


load_dotenv(dotenv_path=repo_root() / ".env")


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


# --- Runtime mode ------------------------------------------------------------
USE_LOCAL_DB = _flag("USE_LOCAL_DB", "1")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DB_PATH = Path(os.getenv("DB_PATH", str(repo_root() / "data" / "app.db")))
MEDIA_DIR = Path(os.getenv("MEDIA_DIR", str(repo_root() / "media")))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
ADMIN_USER_IDS = {
    u.strip() for u in os.getenv("ADMIN_USER_IDS", "").split(",") if u.strip()
}

# --- Supabase ----------------------------------------------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# --- Generation providers ----------------------------------------------------
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE = "https://api.openai.com/v1"
STORY_MODEL = os.getenv("STORY_MODEL", "gpt-4o-mini")
TRANSLATION_MODEL = os.getenv("TRANSLATION_MODEL", "gpt-4o")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "dall-e-3")
TTS_MODEL = os.getenv("TTS_MODEL", "tts-1")
RUNWARE_API_KEY = os.getenv("RUNWARE_API_KEY", "")
RUNWARE_URL = "https://api.runware.ai/v1"
RUNWARE_MODEL = os.getenv("RUNWARE_MODEL", "runware:100@1")

def default_muxer_url(supabase_url: str, public_base_url: str) -> str:
    """The Supabase edge function when Supabase is configured, else this API's own route."""
    if supabase_url:
        return f"{supabase_url}/functions/v1/process-story-video"
    return f"{public_base_url}/process-story-video"


MUXER_URL = os.getenv("MUXER_URL", default_muxer_url(SUPABASE_URL, PUBLIC_BASE_URL))
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")

# --- Billing -----------------------------------------------------------------
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

# --- Storage buckets ---------------------------------------------------------
VIDEO_BUCKET = "story-videos"
AUDIO_BUCKET = "story-audio"
IMAGE_BUCKET = "story-images"
PDF_BUCKET = "story-pdfs"


def supabase_enabled() -> bool:
    return bool(SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY)
