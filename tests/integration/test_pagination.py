"""Integration tests for pagination, chunking and lazy iteration."""

from __future__ import annotations

import pytest

from blog import Tag
from orm_engine.application import Database, LengthAwarePaginator, Paginator
from orm_engine.domain.exceptions import QueryConstructionError

NAMES = ("a", "b", "c", "d", "e", "f", "g")


@pytest.fixture
def tags(db: Database) -> Database:
    """Seven tags named a..g; the query log starts empty."""
    Tag.insert([{"name": name} for name in NAMES])
    db.flush_query_log()
    return db


def _count(db: Database) -> int:
    return len(db.get_query_log())


@pytest.mark.integration
class TestPaginate:
    """Tests for length-aware pagination."""

    def test_middle_page(self, tags: Database) -> None:
        page = Tag.query().order_by("name").paginate(3, page=2)

        assert isinstance(page, LengthAwarePaginator)
        assert [tag.name for tag in page] == ["d", "e", "f"]
        assert page.total == 7
        assert page.last_page == 3
        assert (page.from_item, page.to_item) == (4, 6)
        assert page.has_more_pages()
        assert _count(tags) == 2

    def test_last_page(self, tags: Database) -> None:
        page = Tag.query().order_by("name").paginate(3, page=3)

        assert [tag.name for tag in page] == ["g"]
        assert not page.has_more_pages()
        assert page.next_page_url() is None
        assert page.previous_page_url() == "?page=2"

    def test_page_past_the_end(self, tags: Database) -> None:
        page = Tag.query().paginate(3, page=9)

        assert len(page) == 0
        assert page.from_item is None
        assert page.total == 7

    def test_empty_result_skips_select(self, db: Database) -> None:
        page = Tag.query().paginate(5)

        assert page.total == 0
        assert page.last_page == 1
        assert _count(db) == 1

    def test_page_size_clamped(self, tags: Database) -> None:
        assert Tag.query().paginate(10_000).per_page == 100
        assert Tag.query().paginate(0).per_page == 1

    def test_to_dict(self, tags: Database) -> None:
        page = Tag.query().order_by("name").paginate(2)
        page.path = "/tags"
        data = page.to_dict()

        assert data["total"] == 7
        assert data["last_page"] == 4
        assert data["next_page_url"] == "/tags?page=2"
        assert [row["name"] for row in data["data"]] == ["a", "b"]

    def test_counts_respect_predicates(self, tags: Database) -> None:
        page = Tag.where("name", ">", "c").paginate(10)

        assert page.total == 4
        assert page.last_page == 1


@pytest.mark.integration
class TestSimplePaginate:
    """Tests for pagination without a count query."""

    def test_fetches_one_extra_row(self, tags: Database) -> None:
        page = Tag.query().order_by("name").simple_paginate(3, page=2)

        assert isinstance(page, Paginator)
        assert [tag.name for tag in page] == ["d", "e", "f"]
        assert page.has_more_pages()
        assert _count(tags) == 1
        assert tags.get_query_log()[0].sql.endswith("LIMIT 4 OFFSET 3")

    def test_final_page(self, tags: Database) -> None:
        page = Tag.query().order_by("name").simple_paginate(3, page=3)

        assert [tag.name for tag in page] == ["g"]
        assert not page.has_more_pages()


@pytest.mark.integration
class TestChunking:
    """Tests for chunk(), chunk_by_id(), lazy() and cursor()."""

    def test_chunk_sizes(self, tags: Database) -> None:
        sizes = []

        assert Tag.query().chunk(3, lambda chunk: sizes.append(len(chunk)))

        assert sizes == [3, 3, 1]
        assert _count(tags) == 3

    def test_chunk_stops_on_false(self, tags: Database) -> None:
        seen = []

        def handle(chunk):
            seen.extend(chunk.pluck("name"))
            return False

        assert Tag.query().chunk(2, handle) is False
        assert seen == ["a", "b"]

    def test_chunk_rejects_bad_size(self, tags: Database) -> None:
        with pytest.raises(QueryConstructionError):
            Tag.query().chunk(0, print)

    def test_table_chunk_needs_order(self, tags: Database) -> None:
        with pytest.raises(QueryConstructionError):
            tags.table("tags").chunk(2, print)

    def test_chunk_by_id_survives_deletes(self, tags: Database) -> None:
        seen = []

        def consume(chunk):
            seen.extend(chunk.pluck("name"))
            for tag in chunk:
                tag.delete()

        assert Tag.query().chunk_by_id(3, consume)

        assert seen == list(NAMES)
        assert Tag.count() == 0

    def test_chunk_by_id_groups_or_predicates(self, tags: Database) -> None:
        seen = []

        Tag.where("name", "a").or_where("name", "g").chunk_by_id(1, lambda chunk: seen.extend(chunk.pluck("name")))

        assert seen == ["a", "g"]

    def test_chunk_by_id_on_table(self, tags: Database) -> None:
        seen = []

        tags.table("tags").chunk_by_id(4, lambda rows: seen.extend(row["name"] for row in rows), column="id")

        assert seen == list(NAMES)

    def test_lazy(self, tags: Database) -> None:
        names = [tag.name for tag in Tag.query().lazy(chunk_size=3)]

        assert names == list(NAMES)
        assert _count(tags) == 3

    def test_cursor(self, tags: Database) -> None:
        iterator = Tag.query().order_by("name", "desc").cursor()

        assert next(iterator).name == "g"
        assert [tag.name for tag in iterator][-1] == "a"
        assert _count(tags) == 1
