"""Integration tests for entity persistence: create, read, update, delete."""

from __future__ import annotations

from datetime import datetime

import pytest

from blog import Comment, Post, Tag, User
from orm_engine.application import Database
from orm_engine.domain.exceptions import (
    IllegalStateTransitionError,
    LazyLoadingViolationError,
    ModelNotFoundError,
    ModelNotPersistedError,
    MultipleRecordsFoundError,
    ValidationFailedError,
)


def _statements(db: Database) -> list[str]:
    return [entry.sql for entry in db.get_query_log()]


@pytest.mark.integration
class TestCreate:
    """Tests for inserting entities."""

    def test_create_assigns_key_and_timestamps(self, db: Database, author: User) -> None:
        post = Post.create({"user_id": author.id, "title": "Hello", "meta": {"tags": ["x"]}})

        assert post.exists
        assert post.was_recently_created
        assert isinstance(post.id, int)
        assert isinstance(post.created_at, datetime)
        assert post.created_at == post.updated_at
        assert post.version == 1
        assert post.is_clean()

    def test_round_trip(self, db: Database, author: User) -> None:
        created = Post.create({"user_id": author.id, "title": "Hello", "meta": {"a": 1}, "published": True})

        fetched = Post.find(created.id)

        assert fetched is not created
        assert fetched.title == "Hello"
        assert fetched.meta == {"a": 1}
        assert fetched.published is True
        assert fetched.status == "draft"
        assert fetched.is_clean()
        assert not fetched.was_recently_created

    def test_mutator_applied(self, db: Database, author: User) -> None:
        assert User.find(author.id).get_raw_attribute("email") == "ada@example.com"

    def test_validation_failure_is_soft(self, db: Database) -> None:
        post = Post.create({"title": "ab"})

        assert not post.exists
        assert "title" in post.errors
        assert Post.count() == 0
        with pytest.raises(ValidationFailedError) as exc_info:
            post.validate_or_fail()
        assert "title" in exc_info.value.errors

    def test_cancelled_by_listener(self, db: Database) -> None:
        Post.on("creating", lambda post: False)

        post = Post.create({"title": "Blocked"})

        assert not post.exists
        assert Post.count() == 0

    def test_observer_events_in_order(self, db: Database) -> None:
        events = []

        class Recorder:
            def saving(self, post):
                events.append("saving")

            def creating(self, post):
                events.append("creating")

            def created(self, post):
                events.append("created")

            def saved(self, post):
                events.append("saved")

        Post.observe(Recorder)
        Post.create({"title": "Observed"})

        assert events == ["saving", "creating", "created", "saved"]

    def test_listeners_are_per_type(self, db: Database, author: User) -> None:
        Comment.on("creating", lambda comment: False)

        post = Post.create({"title": "Still saved"})

        assert post.exists

    def test_first_or_create(self, db: Database) -> None:
        first = Tag.first_or_create({"name": "python"})
        second = Tag.first_or_create({"name": "python"})

        assert first.is_same(second)
        assert Tag.count() == 1

    def test_insert_and_upsert(self, db: Database) -> None:
        Tag.insert([{"name": "a"}, {"name": "b"}])
        Tag.upsert([{"name": "a"}, {"name": "c"}], unique_by="name")

        assert Tag.query().order_by("name").pluck("name") == ["a", "b", "c"]


@pytest.mark.integration
class TestRead:
    """Tests for fetching entities."""

    def test_find_or_fail(self, db: Database, seeded: list[Post]) -> None:
        assert Post.find_or_fail(seeded[0].id).title == "Post 1"
        with pytest.raises(ModelNotFoundError) as exc_info:
            Post.find_or_fail([seeded[0].id, 999])
        assert exc_info.value.ids == [999]

    def test_find_many_with_empty_keys_skips_query(self, db: Database, seeded: list[Post]) -> None:
        assert Post.find([]) == []
        assert _statements(db) == []

    def test_sole(self, db: Database, seeded: list[Post]) -> None:
        assert Post.where("title", "Post 2").sole().is_same(seeded[1])
        with pytest.raises(MultipleRecordsFoundError):
            Post.query().sole()
        with pytest.raises(ModelNotFoundError):
            Post.where("title", "nope").sole()

    def test_aggregates(self, db: Database, seeded: list[Post]) -> None:
        assert Comment.count() == 5
        assert Comment.sum("votes") == 4
        assert Comment.max("votes") == 2
        assert Comment.where("votes", ">", 100).exists() is False
        assert Comment.where("votes", ">", 1).exists() is True

    def test_value_and_pluck(self, db: Database, seeded: list[Post]) -> None:
        assert Post.where("id", seeded[2].id).value("title") == "Post 3"
        assert Post.query().pluck("title", "id") == {p.id: p.title for p in seeded}

    def test_local_scope(self, db: Database, seeded: list[Post]) -> None:
        seeded[0].update({"published": True})
        assert Post.published_only().pluck("id") == [seeded[0].id]
        assert Post.titled("Post 3").first().is_same(seeded[2])

    def test_table_query_returns_rows(self, db: Database, seeded: list[Post]) -> None:
        rows = db.table("posts").where("title", "Post 1").get()
        assert rows[0]["title"] == "Post 1"

    def test_cursor_hydrates_one_statement(self, db: Database, seeded: list[Post]) -> None:
        titles = [post.title for post in Post.query().order_by("id").cursor()]
        assert titles == ["Post 1", "Post 2", "Post 3"]
        assert len(_statements(db)) == 1

    def test_serialization(self, db: Database, author: User) -> None:
        post = Post.create({"user_id": author.id, "title": "Serialize me"})
        data = post.to_dict()

        assert data["summary"] == "Seria"
        assert "email" not in User.find(author.id).to_dict()


@pytest.mark.integration
class TestUpdate:
    """Tests for updating entities."""

    def test_only_dirty_columns_written(self, db: Database, seeded: list[Post]) -> None:
        post = Post.find(seeded[0].id)
        db.flush_query_log()

        post.title = "Renamed"
        assert post.save()

        (sql,) = _statements(db)
        assert sql.startswith("UPDATE `posts` SET `title` = ?")
        assert "`body`" not in sql
        assert post.version == 2
        assert post.was_changed("title")
        assert post.is_clean()

    def test_clean_save_issues_no_statement(self, db: Database, seeded: list[Post]) -> None:
        post = Post.find(seeded[0].id)
        db.flush_query_log()

        assert post.save()
        assert post.save()

        assert _statements(db) == []

    def test_state_transitions(self, db: Database, seeded: list[Post]) -> None:
        post = Post.find(seeded[0].id)

        with pytest.raises(IllegalStateTransitionError):
            post.update({"status": "archived"})

        post.status = "published"
        assert post.save()
        post.status = "archived"
        assert post.save()
        assert Post.find(post.id).status == "archived"

    def test_builder_update_and_increment(self, db: Database, seeded: list[Post]) -> None:
        affected = Comment.where("votes", ">=", 1).update({"body": "bulk"})
        assert affected == 3

        comment = Comment.where("votes", 2).first()
        comment.increment("votes", 5)
        assert comment.votes == 7
        assert comment.is_clean()
        assert Comment.find(comment.id).votes == 7

        comment.decrement("votes")
        assert Comment.find(comment.id).votes == 6

    def test_increment_unsaved_rejected(self, db: Database) -> None:
        with pytest.raises(ModelNotPersistedError):
            Comment({"votes": 1}).increment("votes")

    def test_update_or_create(self, db: Database) -> None:
        tag = Tag.update_or_create({"name": "sql"})
        same = Tag.update_or_create({"name": "sql"}, {"name": "SQL"})

        assert same.is_same(tag)
        assert Tag.find(tag.id).name == "SQL"

    def test_refresh_and_fresh(self, db: Database, seeded: list[Post]) -> None:
        post = Post.find(seeded[1].id)
        Post.where("id", post.id).update({"title": "Changed elsewhere"})

        assert post.fresh().title == "Changed elsewhere"
        assert post.title == "Post 2"
        post.refresh()
        assert post.title == "Changed elsewhere"
        assert post.is_clean()

    def test_replicate(self, db: Database, seeded: list[Post]) -> None:
        copy = seeded[0].replicate()

        assert not copy.exists
        assert copy.get_key() is None
        assert copy.title == "Post 1"
        assert copy.save()
        assert copy.id != seeded[0].id


@pytest.mark.integration
class TestDelete:
    """Tests for hard deletes."""

    def test_delete_removes_row(self, db: Database, seeded: list[Post]) -> None:
        comment = Comment.query().first()

        assert comment.delete()
        assert not comment.exists
        assert Comment.find(comment.id) is None
        assert comment.delete() is False

    def test_destroy_fires_events(self, db: Database, seeded: list[Post]) -> None:
        deleted = []
        Comment.on("deleted", lambda comment: deleted.append(comment.id))
        ids = Comment.query().order_by("id").pluck("id")[:2]

        assert Comment.destroy(ids) == 2
        assert deleted == list(ids)

    def test_builder_delete(self, db: Database, seeded: list[Post]) -> None:
        assert Comment.where("votes", 0).delete() == 2
        assert Comment.count() == 3


@pytest.mark.integration
class TestLazyLoading:
    """Tests for lazily loaded relations."""

    def test_lazy_load_once(self, db: Database, seeded: list[Post]) -> None:
        post = Post.find(seeded[0].id)
        db.flush_query_log()

        assert len(post.comments) == 2
        assert len(post.comments) == 2
        assert len(_statements(db)) == 1

    def test_prevented_lazy_loading(self, db: Database, seeded: list[Post]) -> None:
        Post.prevent_lazy_loading()
        post = Post.find(seeded[0].id)

        with pytest.raises(LazyLoadingViolationError):
            post.comments

        assert len(Post.with_("comments").find(post.id).comments) == 2

    def test_related_query(self, db: Database, seeded: list[Post]) -> None:
        post = seeded[2]
        assert post.related_query("comments").where("votes", ">", 0).count() == 2
