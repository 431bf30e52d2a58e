from __future__ import annotations

import asyncio
import uuid
from typing import Any, Optional

from moral_story_maker.backend.services import credits, media
from moral_story_maker.backend.services.stories import get_story_or_404
from moral_story_maker.common.config import PDF_BUCKET
from moral_story_maker.common.errors import DownloadError, NotFound
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import PdfAsset
from moral_story_maker.common.utils import build_story_pdf

log = get_logger(__name__)


async def _load_cover(cover_url: Optional[str]) -> Optional[bytes]:
    if not cover_url:
        return None
    try:
        return media.normalize_image_png(await media.fetch_bytes(cover_url, timeout=30))
    except DownloadError as e:
        log.warning("PDF cover skipped: {}", e.message)
        return None


async def export_story_pdf(
    db: Any,
    store: Any,
    *,
    user_id: str,
    story_id: str,
    cover_url: Optional[str] = None,
) -> PdfAsset:
    """Render, upload, record and charge one PDF of a story."""
    story = await get_story_or_404(db, story_id)
    cover = await _load_cover(cover_url)
    pdf_bytes = await asyncio.to_thread(build_story_pdf, story, cover)

    key = f"{story_id}/{uuid.uuid4()}.pdf"
    pdf_url = await store.upload(PDF_BUCKET, key, pdf_bytes, "application/pdf")
    cost = await credits.get_credit_cost(db, "pdf")
    asset = await db.insert_pdf_asset(
        PdfAsset(story_id=story_id, user_id=user_id, pdf_url=pdf_url, credits_used=cost)
    )
    await credits.increment_credits(db, user_id, cost)
    log.info("Exported PDF for story {} ({} bytes)", story_id, len(pdf_bytes))
    return asset


async def delete_story_pdf(db: Any, store: Any, *, user_id: str, story_id: str) -> None:
    asset = await db.get_pdf_asset(story_id, user_id)
    if asset is None:
        raise NotFound(f"No PDF for story {story_id}")
    key = store.key_for_url(PDF_BUCKET, asset.pdf_url)
    if key:
        await store.delete(PDF_BUCKET, [key])
    await db.delete_pdf_asset(asset.id)
    log.info("Deleted PDF {} for story {}", asset.id, story_id)
