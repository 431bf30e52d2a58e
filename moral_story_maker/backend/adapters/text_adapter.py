from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, List

from openai import APIError, APIStatusError, AsyncOpenAI

from moral_story_maker.common.config import (
    OPENAI_API_KEY,
    STORY_MODEL,
    TRANSLATION_MODEL,
)
from moral_story_maker.common.errors import UpstreamGenerationError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.parsing import TRANSLATION_MARKERS

log = get_logger(__name__)

STORY_SYSTEM_PROMPT = (
    "You are a skilled storyteller who creates engaging, age-appropriate stories "
    "with clear moral lessons. Each story must be completely unique - never reuse "
    "character names, plot elements, or titles from previous stories. Create fresh, "
    "original content every time. Format the output with a Title at the start and a "
    "Moral at the end, without using any asterisks or decorative characters."
)
MAX_CHARACTER_NAME = 20


@lru_cache(maxsize=1)
def get_client() -> AsyncOpenAI:
    if not OPENAI_API_KEY:
        raise UpstreamGenerationError("OPENAI_API_KEY missing. Put it in .env")
    return AsyncOpenAI(api_key=OPENAI_API_KEY)


# --- Prompts -----------------------------------------------------------------
def character_names(preferences: Dict[str, Any]) -> str:
    names = []
    for key in ("characterName1", "characterName2"):
        name = (preferences.get(key) or "").strip()
        if 0 < len(name) <= MAX_CHARACTER_NAME:
            names.append(name)
    return " and ".join(names)


def build_story_prompt(preferences: Dict[str, Any]) -> str:
    names = character_names(preferences)
    if names:
        character_prompt = (
            f'Use the character names "{names}" as the main characters in the story. '
            "Make sure these characters play central roles in the narrative."
        )
    else:
        character_prompt = "Create appropriate character names for the story."

    extras = []
    for key, label in (
        ("language", "Write the story in"),
        ("tone", "Use a tone that is"),
        ("readingLevel", "Target reading level:"),
        ("lengthPreference", "Preferred length:"),
    ):
        value = (preferences.get(key) or "").strip()
        if value:
            extras.append(f"{label} {value}.")

    return (
        f"Create a {preferences.get('genre')} story for {preferences.get('ageGroup')} "
        f"age group about {preferences.get('moral')}. {character_prompt} "
        "Format the story with a clear title at the start and a moral lesson at the end. "
        "The story should be engaging and end with a clear moral lesson. "
        "Keep it concise but meaningful. Do not use asterisks or other decorative "
        "characters in the formatting."
        + (" " + " ".join(extras) if extras else "")
    )


def build_enrichment_prompt(*, title: str, body: str, moral: str, age_group: str) -> str:
    return (
        "You are a thoughtful educator. For the story below, return a JSON object with:\n"
        "- reflection_questions: 3 short questions that help the reader reflect.\n"
        "- action_steps: 3 concrete things the reader could do to live the moral.\n"
        "- related_quote: one short, real, attributed quote that fits the moral.\n"
        "- discussion_prompts: 3 prompts for a parent, teacher or group.\n"
        "- image_prompt: one sentence describing a single illustration scene, "
        "family-friendly, no text in the image.\n"
        f"Reader age group: {age_group}\n\n"
        f"TITLE: {title}\n\nSTORY:\n{body}\n\nMORAL: {moral}\n\n"
        "OUTPUT FORMAT: Return ONLY valid JSON."
    )


def build_translation_prompt(story: Dict[str, Any], language: str) -> str:
    return (
        f"Translate all components of this story to {language}. Maintain the same tone, "
        "style, and meaning for each part:\n\n"
        f"TITLE: {story.get('title') or ''}\n\n"
        f"STORY: {story.get('content') or ''}\n\n"
        f"MORAL: {story.get('moral') or ''}\n\n"
        f"REFLECTION_QUESTIONS: {json.dumps(story.get('reflection_questions') or [])}\n\n"
        f"ACTION_STEPS: {json.dumps(story.get('action_steps') or [])}\n\n"
        f"RELATED_QUOTE: {story.get('related_quote') or ''}\n\n"
        f"DISCUSSION_PROMPTS: {json.dumps(story.get('discussion_prompts') or [])}\n"
    )


def translation_system_prompt(language: str) -> str:
    shapes = {
        "TITLE": "[translated title]",
        "STORY": "[translated story content]",
        "MORAL": "[translated moral]",
        "REFLECTION_QUESTIONS": "[translated questions as JSON array]",
        "ACTION_STEPS": "[translated steps as JSON array]",
        "RELATED_QUOTE": "[translated quote]",
        "DISCUSSION_PROMPTS": "[translated prompts as JSON array]",
    }
    lines = "\n".join(f"{m}: {shapes[m]}" for m in TRANSLATION_MARKERS)
    return (
        f"You are a professional translator. Translate the given story and its components "
        f"to {language}, maintaining the original meaning, style, and emotional impact. "
        f"Return the translation in this format:\n{lines}"
    )


# --- Helpers -----------------------------------------------------------------
def _safe_json_load(raw_json: str) -> Dict[str, Any]:
    try:
        return json.loads(raw_json)
    except ValueError:
        start = raw_json.find("{")
        end = raw_json.rfind("}")
        if start != -1 and end != -1 and end > start:
            return json.loads(raw_json[start : end + 1])
        raise


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _normalize_enrichment(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "reflection_questions": _str_list(data.get("reflection_questions")),
        "action_steps": _str_list(data.get("action_steps")),
        "related_quote": (str(data.get("related_quote") or "")).strip() or None,
        "discussion_prompts": _str_list(data.get("discussion_prompts")),
        "image_prompt": (str(data.get("image_prompt") or "")).strip() or None,
    }


async def _chat(model: str, messages: List[Dict[str, str]], **kwargs: Any) -> str:
    try:
        resp = await get_client().chat.completions.create(
            model=model, messages=messages, **kwargs
        )
    except APIStatusError as e:
        raise UpstreamGenerationError(
            f"OpenAI API error ({e.status_code}): {e.message}"
        ) from e
    except APIError as e:
        raise UpstreamGenerationError(f"OpenAI API error: {e}") from e
    content = resp.choices[0].message.content if resp.choices else None
    if not content or not content.strip():
        raise UpstreamGenerationError("OpenAI returned an empty response.")
    return content


# --- Public API --------------------------------------------------------------
async def generate_story_text(preferences: Dict[str, Any]) -> str:
    """Raw ``Title\\n...\\nMoral: ...`` text for the given preferences."""
    prompt = build_story_prompt(preferences)
    log.info("Requesting story text from {}", STORY_MODEL)
    return await _chat(
        STORY_MODEL,
        [
            {"role": "system", "content": STORY_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        temperature=0.8,
        presence_penalty=0.3,
        frequency_penalty=0.3,
    )


async def generate_enrichment(
    *, title: str, body: str, moral: str, age_group: str
) -> Dict[str, Any]:
    prompt = build_enrichment_prompt(title=title, body=body, moral=moral, age_group=age_group)
    raw_json = await _chat(
        STORY_MODEL,
        [{"role": "user", "content": prompt}],
        temperature=0.4,
        response_format={"type": "json_object"},
    )
    try:
        data = _safe_json_load(raw_json)
    except ValueError as e:
        raise UpstreamGenerationError(f"Enrichment was not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise UpstreamGenerationError("Enrichment JSON must be an object.")
    return _normalize_enrichment(data)


async def translate_text(story: Dict[str, Any], language: str) -> str:
    log.info("Requesting translation to {} from {}", language, TRANSLATION_MODEL)
    return await _chat(
        TRANSLATION_MODEL,
        [
            {"role": "system", "content": translation_system_prompt(language)},
            {"role": "user", "content": build_translation_prompt(story, language)},
        ],
    )
