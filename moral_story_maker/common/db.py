"""SQLite persistence for local development (USE_LOCAL_DB=1).

Mirrors the Supabase tables the app uses. Every public method is a coroutine
that runs its query in a worker thread on a fresh connection, so concurrent
requests behave like concurrent database clients.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from moral_story_maker.common.auth import hash_password, verify_password
from moral_story_maker.common.config import ADMIN_USER_IDS, DB_PATH
from moral_story_maker.common.models import (
    ENRICHMENT_LIST_FIELDS,
    AudioAsset,
    PdfAsset,
    Story,
    StoryTranslation,
    VideoAsset,
)
from moral_story_maker.common.utils import utc_now_iso

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    subscription_level TEXT DEFAULT 'free',
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS stories (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    moral TEXT NOT NULL DEFAULT '',
    age_group TEXT NOT NULL DEFAULT '',
    genre TEXT NOT NULL DEFAULT '',
    language TEXT,
    tone TEXT,
    reading_level TEXT,
    length_preference TEXT,
    slug TEXT NOT NULL DEFAULT '',
    reflection_questions TEXT,
    action_steps TEXT,
    related_quote TEXT,
    discussion_prompts TEXT,
    image_prompt TEXT,
    author_id TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS story_translations (
    id TEXT PRIMARY KEY,
    original_story_id TEXT NOT NULL,
    translated_story_id TEXT NOT NULL,
    language TEXT NOT NULL,
    user_id TEXT NOT NULL,
    credits_used INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS audio_stories (
    id TEXT PRIMARY KEY,
    story_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    audio_url TEXT NOT NULL,
    voice_id TEXT NOT NULL,
    credits_used INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS story_videos (
    id TEXT PRIMARY KEY,
    story_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    video_url TEXT NOT NULL,
    aspect_ratio TEXT NOT NULL,
    processing_method TEXT,
    credits_used INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS story_pdfs (
    id TEXT PRIMARY KEY,
    story_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    pdf_url TEXT NOT NULL,
    credits_used INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS story_images (
    id TEXT PRIMARY KEY,
    story_id TEXT,
    user_id TEXT,
    image_url TEXT NOT NULL,
    aspect_ratio TEXT NOT NULL,
    credits_used INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS story_favorites (
    id TEXT PRIMARY KEY,
    story_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (story_id, user_id)
);
CREATE TABLE IF NOT EXISTS user_story_counts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    month_year TEXT NOT NULL,
    credits_used INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, month_year)
);
CREATE TABLE IF NOT EXISTS subscription_tiers (
    level TEXT PRIMARY KEY,
    name TEXT,
    monthly_credits INTEGER NOT NULL DEFAULT 0,
    stripe_price_id TEXT,
    stripe_yearly_price_id TEXT
);
CREATE TABLE IF NOT EXISTS api_configurations (
    key_name TEXT PRIMARY KEY,
    is_active INTEGER DEFAULT 0,
    audio_credits_cost INTEGER,
    image_credits_cost INTEGER,
    pdf_credits_cost INTEGER,
    kids_story_credits_cost INTEGER
);
CREATE TABLE IF NOT EXISTS content_filters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    word TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'general'
);
"""

INCREMENT_SQL = """
INSERT INTO user_story_counts (id, user_id, month_year, credits_used, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (user_id, month_year) DO UPDATE SET
    credits_used = user_story_counts.credits_used + excluded.credits_used,
    updated_at = excluded.updated_at
"""


def _new_id() -> str:
    return uuid.uuid4().hex


def _story_params(story: Story) -> Dict[str, Any]:
    row = story.to_row()
    for key in ENRICHMENT_LIST_FIELDS:
        row[key] = json.dumps(row.get(key) or [], ensure_ascii=False)
    return row


class LocalDatabase:
    def __init__(self, path: Path = DB_PATH) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._tx() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self.path, timeout=30)) as conn:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            with conn:
                yield conn

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        with self._tx() as conn:
            row = conn.execute(sql, params).fetchone()
        return dict(row) if row else None

    def _fetchall(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self._tx() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    def _execute(self, sql: str, params: tuple | dict = ()) -> None:
        with self._tx() as conn:
            conn.execute(sql, params)

    async def _run(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # --- auth ---------------------------------------------------------------
    def _create_user(self, email: str, password: str) -> str:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValueError("Please enter a valid email.")
        user_id = str(uuid.uuid4())
        try:
            with self._tx() as conn:
                conn.execute(
                    "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, email, hash_password(password), utc_now_iso()),
                )
                conn.execute(
                    "INSERT INTO profiles (id, subscription_level, updated_at) VALUES (?, 'free', ?)",
                    (user_id, utc_now_iso()),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError("Email already registered.") from exc
        return user_id

    async def create_user(self, email: str, password: str) -> str:
        return await self._run(self._create_user, email, password)

    def _authenticate(self, email: str, password: str) -> Optional[str]:
        row = self._fetchone(
            "SELECT id, password_hash FROM users WHERE email = ?",
            ((email or "").strip().lower(),),
        )
        if row and verify_password(password or "", row["password_hash"]):
            return row["id"]
        return None

    async def authenticate(self, email: str, password: str) -> Optional[str]:
        return await self._run(self._authenticate, email, password)

    async def create_session(self, user_id: str) -> str:
        token = uuid.uuid4().hex
        await self._run(
            self._execute,
            "INSERT INTO sessions (token, user_id, created_at) VALUES (?, ?, ?)",
            (token, user_id, utc_now_iso()),
        )
        return token

    async def get_user_id(self, token: str) -> Optional[str]:
        if not token:
            return None
        row = await self._run(
            self._fetchone, "SELECT user_id FROM sessions WHERE token = ?", (token,)
        )
        return row["user_id"] if row else None

    async def is_admin(self, user_id: str) -> bool:
        return user_id in ADMIN_USER_IDS

    # --- stories ------------------------------------------------------------
    def _insert_story(self, story: Story) -> Story:
        story.id = story.id or _new_id()
        story.created_at = story.created_at or utc_now_iso()
        row = _story_params(story)
        cols = ", ".join(row)
        marks = ", ".join(f":{k}" for k in row)
        self._execute(f"INSERT INTO stories ({cols}) VALUES ({marks})", row)
        return story

    async def insert_story(self, story: Story) -> Story:
        return await self._run(self._insert_story, story)

    async def get_story(self, story_id: str) -> Optional[Story]:
        row = await self._run(self._fetchone, "SELECT * FROM stories WHERE id = ?", (story_id,))
        return Story.from_row(row) if row else None

    async def list_stories(self, author_id: str) -> List[Story]:
        rows = await self._run(
            self._fetchall,
            "SELECT * FROM stories WHERE author_id = ? ORDER BY created_at DESC",
            (author_id,),
        )
        return [Story.from_row(r) for r in rows]

    async def update_story(self, story_id: str, patch: Dict[str, Any]) -> Optional[Story]:
        if patch:
            values = {
                k: json.dumps(v, ensure_ascii=False) if k in ENRICHMENT_LIST_FIELDS else v
                for k, v in patch.items()
            }
            assignments = ", ".join(f"{k} = :{k}" for k in values)
            await self._run(
                self._execute,
                f"UPDATE stories SET {assignments} WHERE id = :story_id",
                {**values, "story_id": story_id},
            )
        return await self.get_story(story_id)

    async def delete_story(self, story_id: str) -> None:
        await self._run(self._execute, "DELETE FROM stories WHERE id = ?", (story_id,))

    async def insert_translation(self, translation: StoryTranslation) -> None:
        await self._run(
            self._execute,
            "INSERT INTO story_translations (id, original_story_id, translated_story_id, language, user_id, credits_used, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                _new_id(),
                translation.original_story_id,
                translation.translated_story_id,
                translation.language,
                translation.user_id,
                translation.credits_used,
                utc_now_iso(),
            ),
        )

    async def toggle_favorite(self, story_id: str, user_id: str) -> bool:
        def toggle() -> bool:
            with self._tx() as conn:
                deleted = conn.execute(
                    "DELETE FROM story_favorites WHERE story_id = ? AND user_id = ?",
                    (story_id, user_id),
                ).rowcount
                if deleted:
                    return False
                conn.execute(
                    "INSERT INTO story_favorites (id, story_id, user_id, created_at) VALUES (?, ?, ?, ?)",
                    (_new_id(), story_id, user_id, utc_now_iso()),
                )
                return True

        return await self._run(toggle)

    # --- media assets -------------------------------------------------------
    async def insert_audio_asset(self, asset: AudioAsset) -> AudioAsset:
        asset.id = asset.id or _new_id()
        await self._run(
            self._execute,
            "INSERT INTO audio_stories (id, story_id, user_id, audio_url, voice_id, credits_used, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (asset.id, asset.story_id, asset.user_id, asset.audio_url, asset.voice_id, asset.credits_used, utc_now_iso()),
        )
        return asset

    async def get_audio_asset(self, story_id: str, user_id: str) -> Optional[AudioAsset]:
        row = await self._run(
            self._fetchone,
            "SELECT id, story_id, user_id, audio_url, voice_id, credits_used FROM audio_stories "
            "WHERE story_id = ? AND user_id = ? ORDER BY created_at DESC",
            (story_id, user_id),
        )
        return AudioAsset(**row) if row else None

    async def insert_video_asset(self, asset: VideoAsset) -> VideoAsset:
        asset.id = asset.id or _new_id()
        await self._run(
            self._execute,
            "INSERT INTO story_videos (id, story_id, user_id, video_url, aspect_ratio, processing_method, credits_used, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                asset.id,
                asset.story_id,
                asset.user_id,
                asset.video_url,
                asset.aspect_ratio,
                asset.processing_method,
                asset.credits_used,
                utc_now_iso(),
            ),
        )
        return asset

    async def insert_pdf_asset(self, asset: PdfAsset) -> PdfAsset:
        asset.id = asset.id or _new_id()
        await self._run(
            self._execute,
            "INSERT INTO story_pdfs (id, story_id, user_id, pdf_url, credits_used, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (asset.id, asset.story_id, asset.user_id, asset.pdf_url, asset.credits_used, utc_now_iso()),
        )
        return asset

    async def get_pdf_asset(self, story_id: str, user_id: str) -> Optional[PdfAsset]:
        row = await self._run(
            self._fetchone,
            "SELECT id, story_id, user_id, pdf_url, credits_used FROM story_pdfs "
            "WHERE story_id = ? AND user_id = ? ORDER BY created_at DESC",
            (story_id, user_id),
        )
        return PdfAsset(**row) if row else None

    async def delete_pdf_asset(self, asset_id: str) -> None:
        await self._run(self._execute, "DELETE FROM story_pdfs WHERE id = ?", (asset_id,))

    async def insert_story_image(
        self,
        *,
        story_id: Optional[str],
        user_id: str,
        image_url: str,
        aspect_ratio: str,
        credits_used: int,
    ) -> None:
        await self._run(
            self._execute,
            "INSERT INTO story_images (id, story_id, user_id, image_url, aspect_ratio, credits_used, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (_new_id(), story_id, user_id, image_url, aspect_ratio, credits_used, utc_now_iso()),
        )

    # --- credit ledger ------------------------------------------------------
    def _increment(self, user_id: str, month_year: str, delta: int) -> int:
        with self._tx() as conn:
            conn.execute(INCREMENT_SQL, (_new_id(), user_id, month_year, delta, utc_now_iso()))
            row = conn.execute(
                "SELECT credits_used FROM user_story_counts WHERE user_id = ? AND month_year = ?",
                (user_id, month_year),
            ).fetchone()
        return int(row["credits_used"])

    async def increment_credits(self, user_id: str, month_year: str, delta: int) -> int:
        return await self._run(self._increment, user_id, month_year, delta)

    async def get_credits_used(self, user_id: str, month_year: str) -> int:
        row = await self._run(
            self._fetchone,
            "SELECT credits_used FROM user_story_counts WHERE user_id = ? AND month_year = ?",
            (user_id, month_year),
        )
        return int(row["credits_used"]) if row else 0

    async def total_credits_used(self, user_id: str) -> int:
        row = await self._run(
            self._fetchone,
            "SELECT COALESCE(SUM(credits_used), 0) AS total FROM user_story_counts WHERE user_id = ?",
            (user_id,),
        )
        return int(row["total"]) if row else 0

    # --- configuration & billing -------------------------------------------
    async def get_api_config(self, key_name: str) -> Optional[Dict[str, Any]]:
        row = await self._run(
            self._fetchone, "SELECT * FROM api_configurations WHERE key_name = ?", (key_name,)
        )
        if row is not None:
            row["is_active"] = bool(row.get("is_active"))
        return row

    async def list_content_filter_words(self) -> List[str]:
        rows = await self._run(self._fetchall, "SELECT word FROM content_filters", ())
        return [r["word"] for r in rows if r.get("word")]

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._fetchone, "SELECT * FROM profiles WHERE id = ?", (user_id,))

    async def update_subscription_level(self, user_id: str, level: str) -> None:
        await self._run(
            self._execute,
            "INSERT INTO profiles (id, subscription_level, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT (id) DO UPDATE SET subscription_level = excluded.subscription_level, "
            "updated_at = excluded.updated_at",
            (user_id, level, utc_now_iso()),
        )

    async def get_tier(self, level: str) -> Optional[Dict[str, Any]]:
        return await self._run(
            self._fetchone, "SELECT * FROM subscription_tiers WHERE level = ?", (level,)
        )

    async def find_tier_by_price(self, price_id: str) -> Optional[Dict[str, Any]]:
        return await self._run(
            self._fetchone,
            "SELECT * FROM subscription_tiers WHERE stripe_price_id = ? OR stripe_yearly_price_id = ?",
            (price_id, price_id),
        )
