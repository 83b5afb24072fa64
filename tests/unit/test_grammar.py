"""Unit tests for the SQL grammar."""

from __future__ import annotations

import pytest
import sqlglot

from orm_engine.domain.exceptions import QueryConstructionError
from orm_engine.domain.services.grammar import CompiledStatement, MySqlGrammar
from orm_engine.domain.value_objects import (
    BasicWhere,
    BetweenWhere,
    Boolean,
    ColumnWhere,
    Direction,
    ExistsWhere,
    InWhere,
    Join,
    JoinKind,
    NestedWhere,
    NullWhere,
    Order,
    QueryDescriptor,
    Raw,
    RawWhere,
)


@pytest.fixture
def grammar() -> MySqlGrammar:
    return MySqlGrammar()


@pytest.mark.unit
class TestIdentifiers:
    """Tests for identifier quoting."""

    def test_wrap_column(self, grammar: MySqlGrammar) -> None:
        assert grammar.wrap("title") == "`title`"

    def test_wrap_qualified(self, grammar: MySqlGrammar) -> None:
        assert grammar.wrap("posts.title") == "`posts`.`title`"

    def test_wrap_star(self, grammar: MySqlGrammar) -> None:
        assert grammar.wrap("posts.*") == "`posts`.*"

    def test_wrap_alias(self, grammar: MySqlGrammar) -> None:
        assert grammar.wrap("post_tag.weight as pivot_weight") == "`post_tag`.`weight` AS `pivot_weight`"

    def test_wrap_raw_verbatim(self, grammar: MySqlGrammar) -> None:
        assert grammar.wrap(Raw("COUNT(*)")) == "COUNT(*)"

    def test_embedded_backtick_escaped(self, grammar: MySqlGrammar) -> None:
        assert grammar.wrap("we`ird") == "`we``ird`"


@pytest.mark.unit
class TestCompileSelect:
    """Tests for SELECT compilation."""

    def test_plain_select(self, grammar: MySqlGrammar) -> None:
        sql, params = grammar.compile_select(QueryDescriptor(table="posts"))
        assert sql == "SELECT * FROM `posts`"
        assert params == ()

    def test_where_and_or(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(
            table="posts",
            wheres=(
                BasicWhere("status", "=", "open"),
                BasicWhere("votes", ">", 10, Boolean.OR),
            ),
        )
        compiled = grammar.compile_select(query)
        assert compiled.sql == "SELECT * FROM `posts` WHERE `status` = ? OR `votes` > ?"
        assert compiled.params == ("open", 10)

    def test_nested_group_keeps_parameter_order(self, grammar: MySqlGrammar) -> None:
        """Parameters follow placeholder order through nested groups."""
        query = QueryDescriptor(
            table="posts",
            wheres=(
                BasicWhere("a", "=", 1),
                NestedWhere(
                    (
                        BasicWhere("b", "=", 2),
                        InWhere("c", (3, 4), Boolean.OR),
                    )
                ),
                BetweenWhere("d", 5, 6),
            ),
        )
        compiled = grammar.compile_select(query)
        assert compiled.sql == (
            "SELECT * FROM `posts` WHERE `a` = ? AND (`b` = ? OR `c` IN (?, ?)) AND `d` BETWEEN ? AND ?"
        )
        assert compiled.params == (1, 2, 3, 4, 5, 6)

    def test_empty_in_matches_nothing(self, grammar: MySqlGrammar) -> None:
        compiled = grammar.compile_select(QueryDescriptor(table="posts", wheres=(InWhere("id", ()),)))
        assert compiled.sql.endswith("WHERE 0 = 1")

    def test_empty_not_in_matches_everything(self, grammar: MySqlGrammar) -> None:
        where = InWhere("id", (), negated=True)
        compiled = grammar.compile_select(QueryDescriptor(table="posts", wheres=(where,)))
        assert compiled.sql.endswith("WHERE 1 = 1")

    def test_null_and_column_predicates(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(
            table="posts",
            wheres=(
                NullWhere("posts.deleted_at"),
                ColumnWhere("updated_at", ">", "created_at"),
            ),
        )
        sql = grammar.compile_select(query).sql
        assert "`posts`.`deleted_at` IS NULL AND `updated_at` > `created_at`" in sql

    def test_raw_where_bindings(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(
            table="posts",
            wheres=(BasicWhere("a", "=", 1), RawWhere("LENGTH(title) > ?", (3,))),
        )
        assert grammar.compile_select(query).params == (1, 3)

    def test_exists_subquery_parameters_inline(self, grammar: MySqlGrammar) -> None:
        sub = QueryDescriptor(table="comments", wheres=(BasicWhere("votes", ">", 5),))
        query = QueryDescriptor(
            table="posts",
            wheres=(BasicWhere("status", "=", "open"), ExistsWhere(sub), BasicWhere("id", "<", 9)),
        )
        compiled = grammar.compile_select(query)
        assert "EXISTS (SELECT * FROM `comments` WHERE `votes` > ?)" in compiled.sql
        assert compiled.params == ("open", 5, 9)

    def test_joins_orders_and_limits(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(
            table="posts",
            columns=("posts.*",),
            joins=(Join("users", "users.id", "=", "posts.user_id", JoinKind.LEFT),),
            orders=(Order("posts.id", Direction.DESC),),
            limit=10,
            offset=20,
        )
        sql = grammar.compile_select(query).sql
        assert sql == (
            "SELECT `posts`.* FROM `posts` LEFT JOIN `users` ON `users`.`id` = `posts`.`user_id`"
            " ORDER BY `posts`.`id` DESC LIMIT 10 OFFSET 20"
        )

    def test_offset_without_limit(self, grammar: MySqlGrammar) -> None:
        sql = grammar.compile_select(QueryDescriptor(table="posts", offset=5)).sql
        assert sql.endswith("LIMIT 9223372036854775807 OFFSET 5")

    def test_lock_clauses(self, grammar: MySqlGrammar) -> None:
        assert grammar.compile_select(QueryDescriptor(table="t", lock="update")).sql.endswith("FOR UPDATE")
        assert grammar.compile_select(QueryDescriptor(table="t", lock="shared")).sql.endswith(
            "LOCK IN SHARE MODE"
        )

    def test_illegal_operator_rejected(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(table="posts", wheres=(BasicWhere("a", "; DROP", 1),))
        with pytest.raises(QueryConstructionError):
            grammar.compile_select(query)

    def test_compiled_sql_parses(self, grammar: MySqlGrammar) -> None:
        """Compiled statements are valid MySQL."""
        query = QueryDescriptor(
            table="posts",
            wheres=(
                BasicWhere("status", "like", "op%"),
                NestedWhere((NullWhere("deleted_at"), BasicWhere("votes", ">=", 1, Boolean.OR))),
            ),
            orders=(Order("id"),),
            limit=3,
        )
        parsed = sqlglot.parse_one(grammar.compile_select(query).sql, read="mysql")
        assert parsed.find(sqlglot.exp.Where) is not None


@pytest.mark.unit
class TestCompileAggregates:
    """Tests for aggregate and exists compilation."""

    def test_count_drops_order_and_limit(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(table="posts", orders=(Order("id"),), limit=5, offset=5)
        compiled = grammar.compile_aggregate(query, "count")
        assert compiled.sql == "SELECT COUNT(*) AS `aggregate` FROM `posts`"

    def test_grouped_count_wraps_derived_table(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(table="comments", columns=("post_id",), groups=("post_id",))
        sql = grammar.compile_aggregate(query, "count").sql
        assert sql.startswith("SELECT COUNT(*) AS `aggregate` FROM (SELECT `post_id`")
        assert sql.endswith("AS `aggregate_table`")

    def test_sum_column(self, grammar: MySqlGrammar) -> None:
        sql = grammar.compile_aggregate(QueryDescriptor(table="comments"), "sum", "votes").sql
        assert sql == "SELECT SUM(`votes`) AS `aggregate` FROM `comments`"

    def test_exists(self, grammar: MySqlGrammar) -> None:
        compiled = grammar.compile_exists(QueryDescriptor(table="posts", wheres=(BasicWhere("id", "=", 1),)))
        assert compiled.sql == "SELECT EXISTS(SELECT * FROM `posts` WHERE `id` = ?) AS `exists`"
        assert compiled.params == (1,)


@pytest.mark.unit
class TestCompileWrites:
    """Tests for INSERT, UPDATE, DELETE and upsert compilation."""

    def test_batch_insert_follows_first_row_columns(self, grammar: MySqlGrammar) -> None:
        compiled = grammar.compile_insert("tags", [{"name": "a", "id": 1}, {"id": 2, "name": "b"}])
        assert compiled.sql == "INSERT INTO `tags` (`name`, `id`) VALUES (?, ?), (?, ?)"
        assert compiled.params == ("a", 1, "b", 2)

    def test_insert_without_rows_rejected(self, grammar: MySqlGrammar) -> None:
        with pytest.raises(QueryConstructionError):
            grammar.compile_insert("tags", [])

    def test_upsert(self, grammar: MySqlGrammar) -> None:
        compiled = grammar.compile_upsert("tags", [{"name": "a", "slug": "x"}], ["slug"])
        assert compiled.sql.endswith("ON DUPLICATE KEY UPDATE `slug` = VALUES(`slug`)")

    def test_update_parameters_precede_where(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(table="posts", wheres=(BasicWhere("id", "=", 7),))
        compiled = grammar.compile_update(query, {"title": "x", "votes": Raw("`votes` + ?", (1,))})
        assert compiled.sql == "UPDATE `posts` SET `title` = ?, `votes` = `votes` + ? WHERE `id` = ?"
        assert compiled.params == ("x", 1, 7)

    def test_update_without_values_rejected(self, grammar: MySqlGrammar) -> None:
        with pytest.raises(QueryConstructionError):
            grammar.compile_update(QueryDescriptor(table="posts"), {})

    def test_delete(self, grammar: MySqlGrammar) -> None:
        query = QueryDescriptor(table="posts", wheres=(InWhere("id", (1, 2)),))
        compiled = grammar.compile_delete(query)
        assert compiled == CompiledStatement("DELETE FROM `posts` WHERE `id` IN (?, ?)", (1, 2))

    def test_savepoints(self, grammar: MySqlGrammar) -> None:
        assert grammar.compile_savepoint("trans_1") == "SAVEPOINT trans_1"
        assert grammar.compile_release_savepoint("trans_1") == "RELEASE SAVEPOINT trans_1"
        assert grammar.compile_rollback_to_savepoint("trans_1") == "ROLLBACK TO SAVEPOINT trans_1"
