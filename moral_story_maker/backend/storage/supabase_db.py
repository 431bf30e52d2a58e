from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from moral_story_maker.common.config import (
    SUPABASE_ANON_KEY,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from moral_story_maker.common.errors import StorageError
from moral_story_maker.common.models import (
    AudioAsset,
    PdfAsset,
    Story,
    StoryTranslation,
    VideoAsset,
)
from moral_story_maker.common.utils import utc_now_iso


def _first(rows: Any) -> Optional[Dict[str, Any]]:
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None


class SupabaseDatabase:
    """PostgREST access with the service-role key.

    Row-level ownership is enforced by the route handlers, not by RLS.
    """

    def __init__(
        self,
        url: str = SUPABASE_URL,
        service_key: str = SUPABASE_SERVICE_ROLE_KEY,
        anon_key: str = SUPABASE_ANON_KEY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not (url and service_key):
            raise RuntimeError(
                "Supabase is not configured (SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY)."
            )
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.anon_key = anon_key or service_key
        self._transport = transport

    def _client(self, timeout: float = 30) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _rest_url(self, path: str) -> str:
        return f"{self.url}/rest/v1/{path.lstrip('/')}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StorageError(f"Supabase {method} {url} failed: {exc}") from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        missing_ok: bool = False,
    ) -> Any:
        resp = await self._send(
            method,
            self._rest_url(path),
            headers=self._headers(prefer),
            params=params,
            json=json,
        )
        # PostgREST answers 400 (22P02) when an id filter is not a valid uuid
        if missing_ok and resp.status_code in (400, 404):
            return None
        if resp.is_error:
            raise StorageError(
                f"Supabase {method} {path} failed: {resp.status_code} {resp.text[:200]}"
            )
        if not resp.content:
            return None
        return resp.json()

    async def _select_one(
        self, table: str, params: Dict[str, str], *, missing_ok: bool = False
    ) -> Optional[Dict[str, Any]]:
        rows = await self._request(
            "GET", table, params={**params, "limit": "1"}, missing_ok=missing_ok
        )
        return _first(rows)

    async def _insert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "POST", table, json=payload, prefer="return=representation"
        )
        return _first(rows) or payload

    # --- auth ---------------------------------------------------------------
    async def get_user_id(self, token: str) -> Optional[str]:
        if not token:
            return None
        resp = await self._send(
            "GET",
            f"{self.url}/auth/v1/user",
            headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
        )
        if resp.status_code in (401, 403):
            return None
        if resp.is_error:
            raise StorageError(f"Supabase auth lookup failed: {resp.status_code}")
        return (resp.json() or {}).get("id")

    async def is_admin(self, user_id: str) -> bool:
        result = await self._request("POST", "rpc/is_admin", json={"user_id": user_id})
        return bool(result)

    # --- stories ------------------------------------------------------------
    async def insert_story(self, story: Story) -> Story:
        row = await self._insert("stories", story.to_row())
        return Story.from_row(row)

    async def get_story(self, story_id: str) -> Optional[Story]:
        row = await self._select_one(
            "stories", {"id": f"eq.{story_id}", "select": "*"}, missing_ok=True
        )
        return Story.from_row(row) if row else None

    async def list_stories(self, author_id: str) -> List[Story]:
        rows = await self._request(
            "GET",
            "stories",
            params={"author_id": f"eq.{author_id}", "select": "*", "order": "created_at.desc"},
        )
        return [Story.from_row(r) for r in rows or []]

    async def update_story(self, story_id: str, patch: Dict[str, Any]) -> Optional[Story]:
        if not patch:
            return await self.get_story(story_id)
        rows = await self._request(
            "PATCH",
            "stories",
            params={"id": f"eq.{story_id}"},
            json={**patch, "updated_at": utc_now_iso()},
            prefer="return=representation",
        )
        row = _first(rows)
        return Story.from_row(row) if row else None

    async def delete_story(self, story_id: str) -> None:
        await self._request("DELETE", "stories", params={"id": f"eq.{story_id}"})

    async def insert_translation(self, translation: StoryTranslation) -> None:
        await self._request(
            "POST",
            "story_translations",
            json={
                "original_story_id": translation.original_story_id,
                "translated_story_id": translation.translated_story_id,
                "language": translation.language,
                "user_id": translation.user_id,
                "credits_used": translation.credits_used,
            },
            prefer="return=minimal",
        )

    async def toggle_favorite(self, story_id: str, user_id: str) -> bool:
        params = {"story_id": f"eq.{story_id}", "user_id": f"eq.{user_id}"}
        existing = await self._select_one("story_favorites", {**params, "select": "id"})
        if existing:
            await self._request("DELETE", "story_favorites", params=params)
            return False
        await self._request(
            "POST",
            "story_favorites",
            json={"story_id": story_id, "user_id": user_id},
            prefer="return=minimal",
        )
        return True

    # --- media assets -------------------------------------------------------
    async def insert_audio_asset(self, asset: AudioAsset) -> AudioAsset:
        row = await self._insert(
            "audio_stories",
            {
                "story_id": asset.story_id,
                "user_id": asset.user_id,
                "audio_url": asset.audio_url,
                "voice_id": asset.voice_id,
                "credits_used": asset.credits_used,
            },
        )
        asset.id = str(row.get("id")) if row.get("id") else asset.id
        return asset

    async def get_audio_asset(self, story_id: str, user_id: str) -> Optional[AudioAsset]:
        row = await self._select_one(
            "audio_stories",
            {
                "story_id": f"eq.{story_id}",
                "user_id": f"eq.{user_id}",
                "select": "id,story_id,user_id,audio_url,voice_id,credits_used",
                "order": "created_at.desc",
            },
            missing_ok=True,
        )
        return AudioAsset(**row) if row else None

    async def insert_video_asset(self, asset: VideoAsset) -> VideoAsset:
        row = await self._insert(
            "story_videos",
            {
                "story_id": asset.story_id,
                "user_id": asset.user_id,
                "video_url": asset.video_url,
                "aspect_ratio": asset.aspect_ratio,
                "processing_method": asset.processing_method,
                "credits_used": asset.credits_used,
            },
        )
        asset.id = str(row.get("id")) if row.get("id") else asset.id
        return asset

    async def insert_pdf_asset(self, asset: PdfAsset) -> PdfAsset:
        row = await self._insert(
            "story_pdfs",
            {
                "story_id": asset.story_id,
                "user_id": asset.user_id,
                "pdf_url": asset.pdf_url,
                "credits_used": asset.credits_used,
            },
        )
        asset.id = str(row.get("id")) if row.get("id") else asset.id
        return asset

    async def get_pdf_asset(self, story_id: str, user_id: str) -> Optional[PdfAsset]:
        row = await self._select_one(
            "story_pdfs",
            {
                "story_id": f"eq.{story_id}",
                "user_id": f"eq.{user_id}",
                "select": "id,story_id,user_id,pdf_url,credits_used",
                "order": "created_at.desc",
            },
            missing_ok=True,
        )
        return PdfAsset(**row) if row else None

    async def delete_pdf_asset(self, asset_id: str) -> None:
        await self._request("DELETE", "story_pdfs", params={"id": f"eq.{asset_id}"})

    async def insert_story_image(
        self,
        *,
        story_id: Optional[str],
        user_id: str,
        image_url: str,
        aspect_ratio: str,
        credits_used: int,
    ) -> None:
        await self._request(
            "POST",
            "story_images",
            json={
                "story_id": story_id,
                "user_id": user_id,
                "image_url": image_url,
                "aspect_ratio": aspect_ratio,
                "credits_used": credits_used,
            },
            prefer="return=minimal",
        )

    # --- credit ledger ------------------------------------------------------
    async def increment_credits(self, user_id: str, month_year: str, delta: int) -> int:
        # atomic upsert-and-add in Postgres, see supabase/migrations
        result = await self._request(
            "POST",
            "rpc/increment_story_credits",
            json={"p_user_id": user_id, "p_month_year": month_year, "p_delta": delta},
        )
        return int(result)

    async def get_credits_used(self, user_id: str, month_year: str) -> int:
        row = await self._select_one(
            "user_story_counts",
            {
                "user_id": f"eq.{user_id}",
                "month_year": f"eq.{month_year}",
                "select": "credits_used",
            },
        )
        return int((row or {}).get("credits_used") or 0)

    async def total_credits_used(self, user_id: str) -> int:
        rows = await self._request(
            "GET",
            "user_story_counts",
            params={"user_id": f"eq.{user_id}", "select": "credits_used"},
        )
        return sum(int(r.get("credits_used") or 0) for r in rows or [])

    # --- configuration & billing -------------------------------------------
    async def get_api_config(self, key_name: str) -> Optional[Dict[str, Any]]:
        return await self._select_one(
            "api_configurations", {"key_name": f"eq.{key_name}", "select": "*"}
        )

    async def list_content_filter_words(self) -> List[str]:
        rows = await self._request("GET", "content_filters", params={"select": "word"})
        return [r["word"] for r in rows or [] if r.get("word")]

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._select_one("profiles", {"id": f"eq.{user_id}", "select": "*"})

    async def update_subscription_level(self, user_id: str, level: str) -> None:
        await self._request(
            "PATCH",
            "profiles",
            params={"id": f"eq.{user_id}"},
            json={"subscription_level": level, "updated_at": utc_now_iso()},
            prefer="return=minimal",
        )

    async def get_tier(self, level: str) -> Optional[Dict[str, Any]]:
        return await self._select_one(
            "subscription_tiers", {"level": f"eq.{level}", "select": "*"}
        )

    async def find_tier_by_price(self, price_id: str) -> Optional[Dict[str, Any]]:
        return await self._select_one(
            "subscription_tiers",
            {
                "or": f"(stripe_price_id.eq.{price_id},stripe_yearly_price_id.eq.{price_id})",
                "select": "level,monthly_credits",
            },
        )
