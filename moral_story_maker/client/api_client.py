import base64
import os
from typing import Any, Dict, Optional

import requests

API_BASE_URL = os.getenv("STORY_API_BASE_URL", "http://127.0.0.1:8000")
REQUEST_TIMEOUT = 120


class StoryApiError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Story API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class StoryApiClient:
    """Thin wrapper over the HTTP API; one method per route."""

    def __init__(
        self,
        token: str = "",
        base_url: str = API_BASE_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=REQUEST_TIMEOUT,
            **kwargs,
        )
        if not resp.ok:
            try:
                body = resp.json()
                detail = body.get("error") or body.get("detail") or resp.text
            except ValueError:
                detail = resp.text
            raise StoryApiError(resp.status_code, str(detail))
        return resp.json()

    # 1- Accounts (local mode)
    def login(self, email: str, password: str, *, register: bool = False) -> str:
        path = "/auth/register" if register else "/auth/login"
        data = self._call("POST", path, json={"email": email, "password": password})
        self.token = data["token"]
        return self.token

    # 2- Story generation
    def generate_story(
        self,
        *,
        age_group: str,
        genre: str,
        moral: str,
        character_names: tuple = (),
        enrich: bool = False,
        save: bool = True,
        **extra: str,
    ) -> Dict[str, Any]:
        preferences = {"ageGroup": age_group, "genre": genre, "moral": moral}
        for i, name in enumerate(character_names[:2], start=1):
            preferences[f"characterName{i}"] = name
        preferences.update({k: v for k, v in extra.items() if v})
        return self._call(
            "POST",
            "/generate-story",
            json={"preferences": preferences, "enrich": enrich, "save": save},
        )

    def translate(self, story_id: str, language: str) -> Dict[str, Any]:
        return self._call(
            "POST", "/translate-story", json={"storyId": story_id, "targetLanguage": language}
        )

    # 3- Media
    def story_audio(self, story_id: str, voice: str = "alloy") -> Dict[str, Any]:
        return self._call("POST", f"/stories/{story_id}/audio", json={"voice": voice})

    def speech(self, text: str, voice: str = "alloy") -> bytes:
        data = self._call("POST", "/text-to-speech", json={"text": text, "voice": voice})
        return base64.b64decode(data["audioContent"])

    def image(self, prompt: str, aspect_ratio: str = "16:9", story_id: Optional[str] = None) -> str:
        payload = {"prompt": prompt, "aspectRatio": aspect_ratio}
        if story_id:
            payload["storyId"] = story_id
        return self._call("POST", "/generate-story-image", json=payload)["imageUrl"]

    def video(self, story_id: str, aspect_ratio: str = "16:9", audio_url: Optional[str] = None) -> str:
        payload = {"storyId": story_id, "aspectRatio": aspect_ratio}
        if audio_url:
            payload["audioUrl"] = audio_url
        video_url = self._call("POST", "/generate-story-video", json=payload)["videoUrl"]
        self._call(
            "POST",
            f"/stories/{story_id}/videos",
            json={"videoUrl": video_url, "aspectRatio": aspect_ratio, "processingMethod": "ffmpeg"},
        )
        return video_url

    def pdf(self, story_id: str) -> Dict[str, Any]:
        return self._call("POST", f"/stories/{story_id}/pdf", json={})

    def credits(self) -> Dict[str, Any]:
        return self._call("GET", "/credits")
