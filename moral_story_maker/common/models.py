from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional


# -----------------------------
# Data Models
# -----------------------------
@dataclass
class Story:
    title: str
    content: str
    moral: str = ""
    age_group: str = ""
    genre: str = ""
    language: Optional[str] = None
    tone: Optional[str] = None
    reading_level: Optional[str] = None
    length_preference: Optional[str] = None
    slug: str = ""
    reflection_questions: List[str] = field(default_factory=list)
    action_steps: List[str] = field(default_factory=list)
    related_quote: Optional[str] = None
    discussion_prompts: List[str] = field(default_factory=list)
    image_prompt: Optional[str] = None
    author_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Story":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in (row or {}).items() if k in known}
        for key in ENRICHMENT_LIST_FIELDS:
            data[key] = _as_list(data.get(key))
        data["title"] = data.get("title") or ""
        data["content"] = data.get("content") or ""
        data["moral"] = data.get("moral") or ""
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        return cls(**data)

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        for key in ("id", "created_at"):
            if row.get(key) is None:
                row.pop(key, None)
        return row


@dataclass
class AudioAsset:
    story_id: str
    user_id: str
    audio_url: str
    voice_id: str
    credits_used: int
    id: Optional[str] = None


@dataclass
class VideoAsset:
    story_id: str
    user_id: str
    video_url: str
    aspect_ratio: str
    processing_method: Optional[str] = None
    credits_used: int = 0
    id: Optional[str] = None


@dataclass
class PdfAsset:
    story_id: str
    user_id: str
    pdf_url: str
    credits_used: int
    id: Optional[str] = None


@dataclass
class StoryTranslation:
    original_story_id: str
    translated_story_id: str
    language: str
    user_id: str
    credits_used: int = 1


@dataclass
class ParsedStory:
    title: str
    body: str
    moral: str


@dataclass
class TranslatedSections:
    """Sections parsed out of a translation response; ``None`` means absent."""

    title: Optional[str] = None
    story: Optional[str] = None
    moral: Optional[str] = None
    reflection_questions: Optional[List[Any]] = None
    action_steps: Optional[List[Any]] = None
    related_quote: Optional[str] = None
    discussion_prompts: Optional[List[Any]] = None


@dataclass
class CreditSummary:
    month_year: str
    credits_used: int
    monthly_credits: Optional[int]
    subscription_level: str
    total_credits_used: int

    @property
    def remaining(self) -> Optional[int]:
        if self.monthly_credits is None:
            return None
        return max(self.monthly_credits - self.credits_used, 0)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return [value] if value.strip() else []
    return list(value) if isinstance(value, (list, tuple)) else []


# -----------------------------
# Helpers / Constants
# -----------------------------
ENRICHMENT_LIST_FIELDS = ("reflection_questions", "action_steps", "discussion_prompts")

ASPECT_RATIOS = ("16:9", "9:16")
# values of the reading_level_type enum
READING_LEVELS = ("early_reader", "beginner", "intermediate", "advanced", "fluent")
PROCESSING_METHODS = ("ffmpeg", "moviepy")
VOICE_OPTIONS = {
    "alloy": "Alloy (Neutral)",
    "echo": "Echo (Male)",
    "fable": "Fable (Female)",
    "onyx": "Onyx (Male)",
    "nova": "Nova (Female)",
    "shimmer": "Shimmer (Female)",
}

# Checked before any paid upstream call; the content_filters table extends it.
BANNED_PHRASES = [
    "nude",
    "naked",
    "explicit",
    "nsfw",
    "porn",
    "violence",
    "gore",
    "blood",
]

# Per-action credit costs; rows in api_configurations override the configurable ones.
DEFAULT_CREDIT_COSTS = {
    "story": 1,
    "translation": 1,
    "kids_story": 1,
    "image": 1,
    "pdf": 1,
    "audio": 3,
    "video": 5,
}
CREDIT_COST_CONFIG = {
    "audio": ("AUDIO_STORY_CREDITS", "audio_credits_cost"),
    "image": ("IMAGE_CREDITS", "image_credits_cost"),
    "pdf": ("PDF_CREDITS", "pdf_credits_cost"),
    "kids_story": ("KIDS_STORY_CREDITS", "kids_story_credits_cost"),
}
IMAGE_PROVIDER_KEY = "IMAGE_GENERATION_PROVIDER"
