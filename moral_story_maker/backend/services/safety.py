from typing import Any

from moral_story_maker.common.errors import ValidationError
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.utils import check_prompt_safety

log = get_logger(__name__)


async def ensure_safe(db: Any, *texts: str) -> None:
    """Banned phrases plus the admin-managed content_filters words."""
    words = await db.list_content_filter_words()
    text = "\n".join(t for t in texts if t)
    try:
        check_prompt_safety(text, words)
    except ValidationError:
        log.warning("Rejected request text by content filter")
        raise
