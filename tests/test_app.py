"""Route tests for the FastAPI app."""

import asyncio
import base64

import pytest

from moral_story_maker.backend.adapters import image_adapter, text_adapter
from moral_story_maker.backend.adapters.image_adapter import GeneratedImage
from moral_story_maker.backend.services import tts
from moral_story_maker.common.config import AUDIO_BUCKET, IMAGE_BUCKET
from moral_story_maker.common.errors import UpstreamGenerationError
from moral_story_maker.common.utils import month_key

GENERATED = (
    "The Lantern of Truth\n"
    "Mia and Leo found an old lantern in the forest. When Leo broke it, "
    "he told the village keeper the truth.\n"
    "Moral: Honesty lights the way, even when it is hard."
)
PREFERENCES = {"ageGroup": "elementary", "genre": "adventure", "moral": "honesty"}


@pytest.fixture
def fake_story_text(monkeypatch):
    calls = []

    async def _generate(preferences):
        calls.append(preferences)
        return GENERATED

    monkeypatch.setattr(text_adapter, "generate_story_text", _generate)
    return calls


def _credits(db, user_id):
    return asyncio.run(db.get_credits_used(user_id, month_key()))


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


class TestAuth:
    def test_register_then_login(self, client):
        resp = client.post("/auth/register", json={"email": "New@Example.com", "password": "hunter22"})
        assert resp.status_code == 200
        assert resp.json()["email"] == "new@example.com"

        resp = client.post("/auth/login", json={"email": "new@example.com", "password": "hunter22"})
        assert resp.status_code == 200
        token = resp.json()["token"]
        assert client.get("/stories", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    def test_duplicate_email(self, client, user):
        resp = client.post("/auth/register", json={"email": "parent@example.com", "password": "hunter22"})
        assert resp.status_code == 400
        assert "already registered" in resp.json()["error"]

    def test_bad_password(self, client, user):
        resp = client.post("/auth/login", json={"email": "parent@example.com", "password": "wrong-one"})
        assert resp.status_code == 401

    def test_invalid_token(self, client):
        resp = client.get("/credits", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid token"}


class TestGenerateStory:
    def test_end_to_end(self, client, db, user, fake_story_text):
        resp = client.post("/generate-story", json={"preferences": PREFERENCES}, headers=user.headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["story"].strip()
        assert body["title"] == "The Lantern of Truth"
        assert body["moral"] == "Honesty lights the way, even when it is hard."
        assert body["content"].startswith("Mia and Leo")
        assert fake_story_text[0]["ageGroup"] == "elementary"
        assert _credits(db, user.user_id) == 1

    def test_save_persists_story(self, client, db, user, fake_story_text):
        resp = client.post(
            "/generate-story",
            json={"preferences": {**PREFERENCES, "characterName1": "Mia"}, "save": True},
            headers=user.headers,
        )
        story_id = resp.json()["storyId"]
        stored = asyncio.run(db.get_story(story_id))
        assert stored.author_id == user.user_id
        assert stored.slug == "the-lantern-of-truth"
        assert stored.genre == "adventure"

    def test_enrichment_is_optional_and_tolerant(self, client, db, user, fake_story_text, monkeypatch):
        async def failing_enrichment(**kwargs):
            raise UpstreamGenerationError("bad json")

        monkeypatch.setattr(text_adapter, "generate_enrichment", failing_enrichment)
        resp = client.post(
            "/generate-story", json={"preferences": PREFERENCES, "enrich": True}, headers=user.headers
        )
        assert resp.status_code == 200
        assert "reflection_questions" not in resp.json()
        assert _credits(db, user.user_id) == 1

    def test_enrichment_fields_returned(self, client, user, fake_story_text, monkeypatch):
        async def enrichment(**kwargs):
            return {"reflection_questions": ["Why?"], "action_steps": [], "related_quote": None,
                    "discussion_prompts": [], "image_prompt": "A lantern glowing"}

        monkeypatch.setattr(text_adapter, "generate_enrichment", enrichment)
        resp = client.post(
            "/generate-story", json={"preferences": PREFERENCES, "enrich": True}, headers=user.headers
        )
        assert resp.json()["reflection_questions"] == ["Why?"]

    def test_banned_phrase_rejected_before_generation(self, client, db, user, fake_story_text):
        resp = client.post(
            "/generate-story",
            json={"preferences": {**PREFERENCES, "moral": "blood and gore"}},
            headers=user.headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Content safety check failed")
        assert fake_story_text == []
        assert _credits(db, user.user_id) == 0

    def test_content_filter_words(self, client, db, user, fake_story_text, seed_row):
        seed_row("INSERT INTO content_filters (word, category) VALUES ('dragons', 'custom')")
        resp = client.post(
            "/generate-story",
            json={"preferences": {**PREFERENCES, "genre": "dragons"}},
            headers=user.headers,
        )
        assert resp.status_code == 400

    def test_upstream_error_is_502_and_not_charged(self, client, db, user, monkeypatch):
        async def failing(preferences):
            raise UpstreamGenerationError("OpenAI API error (500): down")

        monkeypatch.setattr(text_adapter, "generate_story_text", failing)
        resp = client.post("/generate-story", json={"preferences": PREFERENCES}, headers=user.headers)
        assert resp.status_code == 502
        assert resp.json() == {"error": "OpenAI API error (500): down"}
        assert _credits(db, user.user_id) == 0

    def test_requires_auth(self, client, fake_story_text):
        resp = client.post("/generate-story", json={"preferences": PREFERENCES})
        assert resp.status_code == 401

    def test_reading_level_must_be_known(self, client, user, fake_story_text):
        resp = client.post(
            "/generate-story",
            json={"preferences": {**PREFERENCES, "readingLevel": "expert"}, "save": True},
            headers=user.headers,
        )
        assert resp.status_code == 422
        assert fake_story_text == []

    def test_reading_level_is_saved(self, client, db, user, fake_story_text):
        resp = client.post(
            "/generate-story",
            json={"preferences": {**PREFERENCES, "readingLevel": "early_reader"}, "save": True},
            headers=user.headers,
        )
        stored = asyncio.run(db.get_story(resp.json()["storyId"]))
        assert stored.reading_level == "early_reader"


class TestStoriesCrud:
    def test_create_list_get(self, client, user):
        resp = client.post(
            "/stories",
            json={"title": "My Story", "content": "Text", "moral": "Share"},
            headers=user.headers,
        )
        assert resp.status_code == 200
        story_id = resp.json()["id"]
        assert resp.json()["slug"] == "my-story"

        listed = client.get("/stories", headers=user.headers).json()["stories"]
        assert [s["id"] for s in listed] == [story_id]
        assert client.get(f"/stories/{story_id}", headers=user.headers).json()["title"] == "My Story"

    def test_patch_and_delete_own(self, client, user, story):
        resp = client.patch(
            f"/stories/{story.id}",
            json={"title": "Renamed", "action_steps": ["One", "Two"]},
            headers=user.headers,
        )
        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"
        assert resp.json()["action_steps"] == ["One", "Two"]

        assert client.delete(f"/stories/{story.id}", headers=user.headers).status_code == 200
        assert client.get(f"/stories/{story.id}", headers=user.headers).status_code == 404

    def test_patch_rejects_unknown_reading_level(self, client, user, story):
        resp = client.patch(f"/stories/{story.id}", json={"reading_level": "grade-9"}, headers=user.headers)
        assert resp.status_code == 422

    def test_cannot_change_others_story(self, client, other_user, story):
        resp = client.patch(f"/stories/{story.id}", json={"title": "Mine now"}, headers=other_user.headers)
        assert resp.status_code == 403
        assert client.delete(f"/stories/{story.id}", headers=other_user.headers).status_code == 403

    def test_favorite_toggles(self, client, user, story):
        first = client.post(f"/stories/{story.id}/favorite", headers=user.headers).json()
        second = client.post(f"/stories/{story.id}/favorite", headers=user.headers).json()
        assert first == {"favorited": True}
        assert second == {"favorited": False}


class TestMediaRoutes:
    def test_text_to_speech(self, client, user, monkeypatch):
        async def fake_tts(text, *, voice="alloy", **kwargs):
            return b"ID3-audio"

        monkeypatch.setattr(tts, "synthesize_tts", fake_tts)
        resp = client.post("/text-to-speech", json={"text": "Hello", "voice": "nova"}, headers=user.headers)
        assert base64.b64decode(resp.json()["audioContent"]) == b"ID3-audio"

    def test_story_audio_uploads_and_charges(self, client, db, store, user, story, monkeypatch):
        async def fake_tts(text, *, voice="alloy", **kwargs):
            assert story.title in text
            return b"ID3-audio"

        monkeypatch.setattr(tts, "synthesize_tts", fake_tts)
        resp = client.post(f"/stories/{story.id}/audio", json={"voice": "fable"}, headers=user.headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["voice_id"] == "fable"
        assert body["credits_used"] == 3
        assert body["audio_url"].startswith(f"{store.base}/{AUDIO_BUCKET}/{story.id}/")
        assert _credits(db, user.user_id) == 3
        assert asyncio.run(db.get_audio_asset(story.id, user.user_id)).audio_url == body["audio_url"]

    def test_image_with_story_records_and_charges(self, client, db, user, story, monkeypatch):
        async def fake_provider(db):
            return image_adapter.RUNWARE

        async def fake_generate(prompt, *, aspect_ratio, provider):
            assert provider == image_adapter.RUNWARE
            return GeneratedImage(url="https://im.runware.test/a.webp")

        monkeypatch.setattr(image_adapter, "select_provider", fake_provider)
        monkeypatch.setattr(image_adapter, "generate_image", fake_generate)
        resp = client.post(
            "/generate-story-image",
            json={"prompt": "A fox in a meadow", "aspectRatio": "9:16", "storyId": story.id},
            headers=user.headers,
        )
        assert resp.json() == {"imageUrl": "https://im.runware.test/a.webp", "provider": "runware"}
        assert _credits(db, user.user_id) == 1

    def test_inline_image_is_stored(self, client, store, user, monkeypatch):
        async def fake_provider(db):
            return image_adapter.OPENAI

        async def fake_generate(prompt, *, aspect_ratio, provider):
            return GeneratedImage(data=b"png-bytes")

        monkeypatch.setattr(image_adapter, "select_provider", fake_provider)
        monkeypatch.setattr(image_adapter, "generate_image", fake_generate)
        resp = client.post("/generate-story-image", json={"prompt": "A fox"}, headers=user.headers)

        (bucket, key, _), = store.uploads
        assert bucket == IMAGE_BUCKET
        assert resp.json()["imageUrl"] == store.public_url(IMAGE_BUCKET, key)

    def test_image_safety(self, client, user):
        resp = client.post("/generate-story-image", json={"prompt": "something nsfw"}, headers=user.headers)
        assert resp.status_code == 400

    def test_save_video_charges(self, client, db, user, story):
        resp = client.post(
            f"/stories/{story.id}/videos",
            json={"videoUrl": "https://s/v.mp4", "aspectRatio": "9:16"},
            headers=user.headers,
        )
        assert resp.status_code == 200
        assert resp.json()["processing_method"] == "ffmpeg"
        assert _credits(db, user.user_id) == 5

    def test_save_video_rejects_unknown_method(self, client, user, story):
        resp = client.post(
            f"/stories/{story.id}/videos",
            json={"videoUrl": "https://s/v.mp4", "processingMethod": "magic"},
            headers=user.headers,
        )
        assert resp.status_code == 400


class TestCredits:
    def test_summary(self, client, db, user, seed_row):
        seed_row("INSERT INTO subscription_tiers (level, monthly_credits) VALUES ('free', 5)")
        asyncio.run(db.increment_credits(user.user_id, month_key(), 2))
        body = client.get("/credits", headers=user.headers).json()
        assert body["credits_used"] == 2
        assert body["remaining"] == 3
        assert body["subscription_level"] == "free"

    def test_admin_grant_requires_admin(self, client, user, other_user):
        resp = client.post(
            "/admin/credits", json={"userId": other_user.user_id, "credits": 5}, headers=user.headers
        )
        assert resp.status_code == 403

    def test_admin_grant(self, client, db, user, other_user, monkeypatch):
        monkeypatch.setattr("moral_story_maker.common.db.ADMIN_USER_IDS", {user.user_id})
        resp = client.post(
            "/admin/credits", json={"userId": other_user.user_id, "credits": 5}, headers=user.headers
        )
        assert resp.status_code == 200
        assert resp.json()["creditsUsed"] == -5
        assert _credits(db, other_user.user_id) == -5
