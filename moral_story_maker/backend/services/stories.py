from __future__ import annotations

from typing import Any, Dict, Optional

from moral_story_maker.backend.adapters import text_adapter
from moral_story_maker.backend.services import credits
from moral_story_maker.backend.services.safety import ensure_safe
from moral_story_maker.common.errors import Forbidden, NotFound, UpstreamGenerationError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import Story
from moral_story_maker.common.parsing import parse_story_text
from moral_story_maker.common.utils import slugify

log = get_logger(__name__)

EDITABLE_FIELDS = {
    "title",
    "content",
    "moral",
    "age_group",
    "genre",
    "language",
    "tone",
    "reading_level",
    "length_preference",
    "reflection_questions",
    "action_steps",
    "related_quote",
    "discussion_prompts",
    "image_prompt",
}


async def get_story_or_404(db: Any, story_id: str) -> Story:
    story = await db.get_story(story_id)
    if story is None:
        raise NotFound(f"Story {story_id} not found")
    return story


async def get_owned_story(db: Any, story_id: str, user_id: str) -> Story:
    story = await get_story_or_404(db, story_id)
    if story.author_id != user_id:
        raise Forbidden("You can only change your own stories.")
    return story


async def _enrich(title: str, body: str, moral: str, age_group: str) -> Dict[str, Any]:
    try:
        return await text_adapter.generate_enrichment(
            title=title, body=body, moral=moral, age_group=age_group
        )
    except UpstreamGenerationError as e:
        # the story itself is still usable without the extras
        log.warning("Enrichment skipped: {}", e.message)
        return {}


async def generate_story(
    db: Any,
    user_id: str,
    preferences: Dict[str, Any],
    *,
    enrich: bool = False,
    save: bool = False,
) -> Dict[str, Any]:
    """Safety check, generate, parse, optionally enrich, charge, optionally save."""
    await ensure_safe(
        db,
        preferences.get("moral") or "",
        preferences.get("genre") or "",
        preferences.get("characterName1") or "",
        preferences.get("characterName2") or "",
    )

    raw = await text_adapter.generate_story_text(preferences)
    parsed = parse_story_text(raw)
    if not parsed.body.strip():
        raise UpstreamGenerationError("Generated story was empty.")

    extras: Dict[str, Any] = {}
    if enrich:
        extras = await _enrich(parsed.title, parsed.body, parsed.moral, preferences.get("ageGroup") or "")

    await credits.increment_credits(db, user_id, 1)

    result: Dict[str, Any] = {
        "story": raw,
        "title": parsed.title,
        "content": parsed.body,
        "moral": parsed.moral,
        **extras,
    }
    if save:
        story = Story(
            title=parsed.title or "Untitled Story",
            content=parsed.body,
            moral=parsed.moral,
            age_group=preferences.get("ageGroup") or "",
            genre=preferences.get("genre") or "",
            language=preferences.get("language"),
            tone=preferences.get("tone"),
            reading_level=preferences.get("readingLevel"),
            length_preference=preferences.get("lengthPreference"),
            slug=slugify(parsed.title),
            reflection_questions=extras.get("reflection_questions") or [],
            action_steps=extras.get("action_steps") or [],
            related_quote=extras.get("related_quote"),
            discussion_prompts=extras.get("discussion_prompts") or [],
            image_prompt=extras.get("image_prompt"),
            author_id=user_id,
        )
        saved = await db.insert_story(story)
        result["storyId"] = saved.id
        log.info("Saved generated story {} for {}", saved.id, user_id)
    return result


async def create_story(db: Any, user_id: str, fields: Dict[str, Any]) -> Story:
    data = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    story = Story(**data)
    story.author_id = user_id
    story.slug = slugify(fields.get("slug") or story.title)
    return await db.insert_story(story)


async def update_story(db: Any, user_id: str, story_id: str, patch: Dict[str, Any]) -> Story:
    await get_owned_story(db, story_id, user_id)
    data = {k: v for k, v in patch.items() if k in EDITABLE_FIELDS}
    updated = await db.update_story(story_id, data)
    if updated is None:
        raise NotFound(f"Story {story_id} not found")
    return updated


async def delete_story(db: Any, user_id: str, story_id: str) -> None:
    await get_owned_story(db, story_id, user_id)
    await db.delete_story(story_id)
    log.info("Deleted story {}", story_id)
