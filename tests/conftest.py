"""Shared fixtures: a throwaway SQLite database, an in-memory object store and an API client."""

import asyncio
import sqlite3
from dataclasses import dataclass
from typing import Dict, Generator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from moral_story_maker.backend import dependencies
from moral_story_maker.backend.app import app
from moral_story_maker.common.db import LocalDatabase
from moral_story_maker.common.errors import StorageError
from moral_story_maker.common.models import Story


class FakeObjectStore:
    """In-memory stand-in for the object store; records deletes."""

    base = "https://storage.test"

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.uploads: List[Tuple[str, str, str]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.fail_delete = False

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base}/{bucket}/{key}"

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        self.objects[(bucket, key)] = data
        self.uploads.append((bucket, key, content_type))
        return self.public_url(bucket, key)

    async def download(self, bucket: str, key: str) -> bytes:
        try:
            return self.objects[(bucket, key)]
        except KeyError as e:
            raise StorageError(f"missing {bucket}/{key}") from e

    async def delete(self, bucket: str, keys) -> None:
        if self.fail_delete:
            raise StorageError("delete failed")
        for key in keys:
            self.deleted.append((bucket, key))
            self.objects.pop((bucket, key), None)

    def key_for_url(self, bucket: str, url: str) -> Optional[str]:
        prefix = f"{self.base}/{bucket}/"
        return url[len(prefix) :] if url.startswith(prefix) else None


@dataclass
class AuthUser:
    user_id: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def seed(db: LocalDatabase, sql: str, params: tuple = ()) -> None:
    """Write fixture rows straight into the SQLite file."""
    conn = sqlite3.connect(db.path)
    try:
        with conn:
            conn.execute(sql, params)
    finally:
        conn.close()


def make_user(db: LocalDatabase, email: str) -> AuthUser:
    user_id = asyncio.run(db.create_user(email, "secret-pass"))
    return AuthUser(user_id=user_id, token=asyncio.run(db.create_session(user_id)))


def make_story(db: LocalDatabase, author_id: str, **overrides) -> Story:
    fields = dict(
        title="The Honest Fox",
        content="Once upon a time a fox found a lost coin.\n\nHe returned it.",
        moral="Honesty is the best policy.",
        age_group="elementary",
        genre="fable",
        slug="the-honest-fox",
        reflection_questions=["Why did the fox return the coin?"],
        action_steps=["Tell the truth today."],
        related_quote="Honesty is the first chapter in the book of wisdom.",
        discussion_prompts=["When is honesty hard?"],
        author_id=author_id,
    )
    fields.update(overrides)
    return asyncio.run(db.insert_story(Story(**fields)))


@pytest.fixture
def db(tmp_path) -> LocalDatabase:
    return LocalDatabase(tmp_path / "test.db")


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def user(db) -> AuthUser:
    return make_user(db, "parent@example.com")


@pytest.fixture
def other_user(db) -> AuthUser:
    return make_user(db, "other@example.com")


@pytest.fixture
def story(db, user) -> Story:
    return make_story(db, user.user_id)


@pytest.fixture
def client(db, store) -> Generator[TestClient, None, None]:
    app.dependency_overrides[dependencies.get_database] = lambda: db
    app.dependency_overrides[dependencies.get_object_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seed_row(db):
    def _seed(sql: str, params: tuple = ()) -> None:
        seed(db, sql, params)

    return _seed


@pytest.fixture
def story_factory(db):
    def _make(author_id: str, **overrides) -> Story:
        return make_story(db, author_id, **overrides)

    return _make
