from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterable, Optional

import httpx

from moral_story_maker.common.config import (
    MEDIA_DIR,
    PUBLIC_BASE_URL,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from moral_story_maker.common.errors import StorageError
from moral_story_maker.common.logging_config import get_logger

log = get_logger(__name__)


def _check_key(key: str) -> str:
    key = (key or "").strip().lstrip("/")
    if not key or ".." in Path(key).parts:
        raise StorageError(f"Invalid object key: {key!r}")
    return key


class LocalObjectStore:
    """Objects as files under ``MEDIA_DIR/<bucket>/<key>``, served at /media."""

    def __init__(self, root: Path = MEDIA_DIR, base_url: str = PUBLIC_BASE_URL) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path(self, bucket: str, key: str) -> Path:
        return self.root / bucket / _check_key(key)

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/media/{bucket}/{_check_key(key)}"

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        path = self._path(bucket, key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to store {bucket}/{key}: {e}") from e
        return self.public_url(bucket, key)

    async def download(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {bucket}/{key}: {e}") from e

    async def delete(self, bucket: str, keys: Iterable[str]) -> None:
        for key in keys:
            path = self._path(bucket, key)
            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to delete {bucket}/{key}: {e}") from e

    def key_for_url(self, bucket: str, url: str) -> Optional[str]:
        prefix = f"{self.base_url}/media/{bucket}/"
        return url[len(prefix) :] if url and url.startswith(prefix) else None


class SupabaseObjectStore:
    """Supabase Storage over REST with the service-role key."""

    def __init__(
        self,
        url: str = SUPABASE_URL,
        service_key: str = SUPABASE_SERVICE_ROLE_KEY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not (url and service_key):
            raise RuntimeError("Supabase storage is not configured.")
        self.url = url.rstrip("/")
        self.service_key = service_key
        self._transport = transport

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _client(self, timeout: float = 60) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{_check_key(key)}"

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        key = _check_key(key)
        headers = {**self._headers(content_type), "x-upsert": "true", "cache-control": "3600"}
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.url}/storage/v1/object/{bucket}/{key}",
                    headers=headers,
                    content=data,
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Upload of {bucket}/{key} failed: {e}") from e
        if resp.status_code not in (200, 201):
            raise StorageError(
                f"Upload of {bucket}/{key} failed: {resp.status_code} {resp.text}"
            )
        return self.public_url(bucket, key)

    async def download(self, bucket: str, key: str) -> bytes:
        key = _check_key(key)
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"{self.url}/storage/v1/object/{bucket}/{key}",
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Download of {bucket}/{key} failed: {e}") from e
        if resp.status_code != 200:
            raise StorageError(
                f"Download of {bucket}/{key} failed: {resp.status_code} {resp.text}"
            )
        return resp.content

    async def delete(self, bucket: str, keys: Iterable[str]) -> None:
        prefixes = [_check_key(k) for k in keys]
        if not prefixes:
            return
        try:
            async with self._client() as client:
                resp = await client.request(
                    "DELETE",
                    f"{self.url}/storage/v1/object/{bucket}",
                    headers=self._headers("application/json"),
                    json={"prefixes": prefixes},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Delete in {bucket} failed: {e}") from e
        if resp.status_code not in (200, 204):
            raise StorageError(f"Delete in {bucket} failed: {resp.status_code} {resp.text}")

    def key_for_url(self, bucket: str, url: str) -> Optional[str]:
        prefix = f"{self.url}/storage/v1/object/public/{bucket}/"
        return url[len(prefix) :] if url and url.startswith(prefix) else None
