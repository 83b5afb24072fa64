"""Fixtures for integration tests against an in-memory SQLite store."""

from __future__ import annotations

from typing import Generator

import pytest

from blog import BLOG_MODELS, SCHEMA, Comment, Post, User
from orm_engine.application import Database


@pytest.fixture
def db(make_database) -> Generator[Database, None, None]:
    """Provide the blog schema as the process-wide database."""
    database = make_database(SCHEMA)
    yield database
    for model in BLOG_MODELS:
        model.flush_event_listeners()


@pytest.fixture
def author(db: Database) -> User:
    """Provide a stored user."""
    return User.create({"name": "Ada", "email": "ADA@example.com"})


@pytest.fixture
def seeded(db: Database, author: User) -> list[Post]:
    """Three posts with 2, 0 and 3 comments; the query log starts empty."""
    posts = [Post.create({"user_id": author.id, "title": f"Post {n}"}) for n in range(1, 4)]
    for post, count in zip(posts, (2, 0, 3)):
        for n in range(count):
            Comment.create({"post_id": post.id, "user_id": author.id, "body": f"{post.title} c{n}", "votes": n})
    db.flush_query_log()
    return posts
