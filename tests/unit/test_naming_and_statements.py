"""Unit tests for naming conventions and statement classification."""

from __future__ import annotations

import pytest

from orm_engine.domain.services.inflection import plural, singular, snake_case, table_name_for
from orm_engine.domain.services.statements import StatementType, classify_statement


@pytest.mark.unit
class TestInflection:
    """Tests for snake-casing and pluralization."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Post", "post"),
            ("BlogPost", "blog_post"),
            ("HTTPRequest", "http_request"),
            ("blogPost", "blog_post"),
        ],
    )
    def test_snake_case(self, name: str, expected: str) -> None:
        assert snake_case(name) == expected

    @pytest.mark.parametrize(
        "class_name, table",
        [
            ("Post", "posts"),
            ("Category", "categories"),
            ("Box", "boxes"),
            ("Person", "people"),
            ("BlogPost", "blog_posts"),
            ("Day", "days"),
            ("News", "news"),
        ],
    )
    def test_table_name_for(self, class_name: str, table: str) -> None:
        assert table_name_for(class_name) == table

    def test_singular_inverts_plural(self) -> None:
        for word in ("post", "category", "box", "person", "blog_post"):
            assert singular(plural(word)) == word


@pytest.mark.unit
class TestClassifyStatement:
    """Tests for statement classification."""

    @pytest.mark.parametrize(
        "sql, expected",
        [
            ("SELECT * FROM `posts` WHERE `id` = ?", StatementType.SELECT),
            ("INSERT INTO `tags` (`name`) VALUES (?)", StatementType.INSERT),
            ("UPDATE `posts` SET `title` = ? WHERE `id` = ?", StatementType.UPDATE),
            ("DELETE FROM `posts` WHERE `id` IN (?, ?)", StatementType.DELETE),
            ("SELECT EXISTS(SELECT * FROM `posts`) AS `exists`", StatementType.SELECT),
        ],
    )
    def test_classifies_compiled_statements(self, sql: str, expected: StatementType) -> None:
        assert classify_statement(sql) is expected

    def test_savepoint_is_other(self) -> None:
        assert classify_statement("SAVEPOINT trans_1") is StatementType.OTHER

    def test_unparseable_falls_back_to_keyword(self) -> None:
        assert classify_statement("update ((( broken") is StatementType.UPDATE
