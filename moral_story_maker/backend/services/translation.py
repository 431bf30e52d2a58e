from __future__ import annotations

from dataclasses import asdict
from typing import Any

from moral_story_maker.backend.adapters import text_adapter
from moral_story_maker.backend.services import credits
from moral_story_maker.backend.services.stories import get_story_or_404
from moral_story_maker.common.errors import ValidationError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import DEFAULT_CREDIT_COSTS, Story, StoryTranslation
from moral_story_maker.common.parsing import parse_translation

log = get_logger(__name__)


def merge_translation(original: Story, text: str, language: str, user_id: str) -> Story:
    """Build the translated story, falling back per field when a section is missing."""
    sections = parse_translation(text)

    def _list_or_original(value, fallback):
        return value if value is not None else list(fallback or [])

    return Story(
        title=sections.title or f"{original.title} ({language})",
        content=sections.story or "",
        moral=sections.moral or "",
        age_group=original.age_group,
        genre=original.genre,
        language=language,
        tone=original.tone,
        reading_level=original.reading_level,
        length_preference=original.length_preference,
        slug=f"{original.slug}-{language}",
        reflection_questions=_list_or_original(
            sections.reflection_questions, original.reflection_questions
        ),
        action_steps=_list_or_original(sections.action_steps, original.action_steps),
        related_quote=sections.related_quote or "",
        discussion_prompts=_list_or_original(
            sections.discussion_prompts, original.discussion_prompts
        ),
        image_prompt=original.image_prompt,
        author_id=user_id,
    )


async def translate_story(db: Any, *, user_id: str, story_id: str, language: str) -> Story:
    language = (language or "").strip()
    if not language:
        raise ValidationError("targetLanguage is required")

    original = await get_story_or_404(db, story_id)
    slog = log.bind(story_id=story_id, user_id=user_id)
    slog.info("Translating story to {}", language)

    text = await text_adapter.translate_text(asdict(original), language)
    translated = await db.insert_story(merge_translation(original, text, language, user_id))

    cost = DEFAULT_CREDIT_COSTS["translation"]
    await db.insert_translation(
        StoryTranslation(
            original_story_id=story_id,
            translated_story_id=translated.id,
            language=language,
            user_id=user_id,
            credits_used=cost,
        )
    )
    await credits.increment_credits(db, user_id, cost)
    slog.info("Saved translation {}", translated.id)
    return translated
