"""Unit tests for Builder construction and compilation (no statements executed)."""

from __future__ import annotations

import pytest

from orm_engine import Model, belongs_to, belongs_to_many, has_many, morph_to, scope
from orm_engine.application import Builder
from orm_engine.domain.exceptions import QueryConstructionError, UnknownRelationError


class Writer(Model):
    articles = has_many("Article")


class Article(Model):
    soft_deletes = True

    writer = belongs_to(Writer)
    remarks = has_many("Remark")
    labels = belongs_to_many("Label")

    @scope
    def popular(query, minimum=100):
        return query.where("views", ">=", minimum)

    @scope("drafts")
    def _drafts(query):
        return query.where("status", "draft")


class Remark(Model):
    article = belongs_to(Article)
    subject = morph_to()


class Label(Model):
    global_scopes = {"active": lambda query: query.where("labels.active", 1)}


@pytest.mark.unit
class TestImmutability:
    """Builders never change once built."""

    def test_branches_do_not_share_state(self) -> None:
        base = Writer.query().where("name", "Ada")
        left = base.where("id", 1)
        right = base.order_by("name")

        assert base.to_sql() == "SELECT * FROM `writers` WHERE `name` = ?"
        assert left.to_sql() == "SELECT * FROM `writers` WHERE `name` = ? AND `id` = ?"
        assert right.to_sql() == "SELECT * FROM `writers` WHERE `name` = ? ORDER BY `name` ASC"

    def test_descriptor_is_frozen(self) -> None:
        builder = Writer.query()
        with pytest.raises(AttributeError):
            builder.descriptor.limit = 5  # type: ignore[misc]


@pytest.mark.unit
class TestPredicates:
    """Tests for predicate construction."""

    def test_two_argument_where(self) -> None:
        query = Writer.where("name", "Ada")
        assert query.get_bindings() == ("Ada",)

    def test_where_none_is_null(self) -> None:
        assert Writer.where("email", None).to_sql().endswith("WHERE `email` IS NULL")
        assert Writer.where("email", "!=", None).to_sql().endswith("WHERE `email` IS NOT NULL")

    def test_ordering_operator_with_none_rejected(self) -> None:
        with pytest.raises(QueryConstructionError):
            Writer.where("age", ">", None)

    def test_illegal_operator_rejected(self) -> None:
        with pytest.raises(QueryConstructionError):
            Writer.where("age", "=>", 3)

    def test_mapping_groups_ands(self) -> None:
        query = Writer.where("id", ">", 0).or_where({"name": "Ada", "email": None})
        assert query.to_sql() == (
            "SELECT * FROM `writers` WHERE `id` > ? OR (`name` = ? AND `email` IS NULL)"
        )

    def test_nested_callback(self) -> None:
        query = Writer.where("a", 1).where(lambda q: q.where("b", 2).or_where("c", 3))
        assert query.to_sql().endswith("WHERE `a` = ? AND (`b` = ? OR `c` = ?)")
        assert query.get_bindings() == (1, 2, 3)

    def test_callback_must_return_builder(self) -> None:
        with pytest.raises(QueryConstructionError):
            Writer.where(lambda q: None)

    def test_where_not(self) -> None:
        query = Writer.where_not("name", "Ada")
        assert query.to_sql().endswith("WHERE NOT (`name` = ?)")

    def test_where_in_accepts_models_and_subqueries(self) -> None:
        writer = Writer()
        writer.set_raw_attribute("id", 9)
        assert Article.query().where_in("writer_id", [writer, 4]).get_bindings() == (9, 4)

        sub = Writer.query().select("id").where("name", "Ada")
        query = Remark.query().where_in("article_id", sub)
        assert query.to_sql() == (
            "SELECT * FROM `remarks` WHERE `article_id` IN (SELECT `id` FROM `writers` WHERE `name` = ?)"
        )

    def test_where_in_rejects_string(self) -> None:
        with pytest.raises(QueryConstructionError):
            Writer.where_in("id", "123")

    def test_where_between_needs_two_bounds(self) -> None:
        assert Writer.where_between("id", [1, 5]).get_bindings() == (1, 5)
        with pytest.raises(QueryConstructionError):
            Writer.where_between("id", [1, 2, 3])

    def test_where_column(self) -> None:
        assert Writer.where_column("updated_at", "created_at").to_sql().endswith(
            "WHERE `updated_at` = `created_at`"
        )

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(QueryConstructionError):
            Writer.query().limit(-1)
        with pytest.raises(QueryConstructionError):
            Writer.query().offset(-1)

    def test_for_page(self) -> None:
        assert Writer.query().for_page(3, 10).to_sql().endswith("LIMIT 10 OFFSET 20")


@pytest.mark.unit
class TestSoftDeleteAndScopes:
    """Implicit predicates added at compile time."""

    def test_soft_delete_predicate(self) -> None:
        assert Article.query().to_sql() == "SELECT * FROM `articles` WHERE `articles`.`deleted_at` IS NULL"

    def test_with_and_only_trashed(self) -> None:
        assert Article.query().with_trashed().to_sql() == "SELECT * FROM `articles`"
        assert Article.only_trashed().to_sql().endswith("`articles`.`deleted_at` IS NOT NULL")

    def test_or_wheres_grouped_before_soft_delete(self) -> None:
        """An OR in user predicates cannot escape the soft-delete filter."""
        query = Article.where("a", 1).or_where("b", 2)
        assert query.to_sql() == (
            "SELECT * FROM `articles` WHERE (`a` = ? OR `b` = ?) AND `articles`.`deleted_at` IS NULL"
        )

    def test_global_scope_applied_and_removable(self) -> None:
        assert Label.query().to_sql() == "SELECT * FROM `labels` WHERE `labels`.`active` = ?"
        assert Label.query().without_global_scope("active").to_sql() == "SELECT * FROM `labels`"
        assert Label.query().without_global_scopes().to_sql() == "SELECT * FROM `labels`"

    def test_local_scope_from_class_and_query(self) -> None:
        from_class = Article.popular(5)
        from_query = Article.query().where("status", "open").popular()

        assert isinstance(from_class, Builder)
        assert from_class.get_bindings() == (5,)
        assert from_query.get_bindings() == ("open", 100)

    def test_named_scope(self) -> None:
        assert Article.drafts().get_bindings() == ("draft",)

    def test_undefined_scope(self) -> None:
        with pytest.raises(QueryConstructionError):
            Article.query().scope("missing")
        with pytest.raises(AttributeError):
            Article.query().missing_scope()

    def test_when(self) -> None:
        query = Writer.query().when(False, lambda q: q.where("a", 1), lambda q: q.where("b", 2))
        assert query.get_bindings() == (2,)


@pytest.mark.unit
class TestRelationExistence:
    """Tests for where_has()/has() sub-queries."""

    def test_has_many_exists(self) -> None:
        sql = Writer.query().has("articles").to_sql()
        assert sql == (
            "SELECT * FROM `writers` WHERE EXISTS (SELECT * FROM `articles` WHERE "
            "`articles`.`writer_id` = `writers`.`id` AND `articles`.`deleted_at` IS NULL)"
        )

    def test_owned_by_with_callback(self) -> None:
        query = Article.where_has("writer", lambda q: q.where("name", "Ada"))
        assert "EXISTS (SELECT * FROM `writers` WHERE `writers`.`id` = `articles`.`writer_id`" in query.to_sql()
        assert query.get_bindings() == ("Ada",)

    def test_counted_has(self) -> None:
        query = Article.query().has("remarks", ">=", 3)
        expected = (
            "(SELECT COUNT(*) AS `aggregate` FROM `remarks` "
            "WHERE `remarks`.`article_id` = `articles`.`id`) >= ?"
        )
        assert expected in query.to_sql()
        assert query.get_bindings() == (3,)

    def test_many_to_many_joins_pivot(self) -> None:
        sql = Article.query().has("labels").to_sql()
        assert "INNER JOIN `article_label` ON `article_label`.`label_id` = `labels`.`id`" in sql
        assert "`article_label`.`article_id` = `articles`.`id`" in sql

    def test_doesnt_have(self) -> None:
        assert "NOT EXISTS (SELECT * FROM `remarks`" in Article.doesnt_have("remarks").to_sql()

    def test_dotted_path_nests(self) -> None:
        sql = Writer.where_has("articles.remarks").to_sql()
        assert sql.count("EXISTS") == 2

    def test_polymorphic_owned_by_rejected(self) -> None:
        with pytest.raises(QueryConstructionError):
            Remark.query().has("subject")

    def test_unknown_relation(self) -> None:
        with pytest.raises(UnknownRelationError):
            Writer.query().has("nothing")


@pytest.mark.unit
class TestEagerRequests:
    """Tests for with_()/without() bookkeeping."""

    def test_with_collects_paths(self) -> None:
        query = Article.with_("writer", ["remarks", "labels"])
        assert [path for path, _ in query.eager_loads] == ["writer", "remarks", "labels"]

    def test_later_constraint_replaces(self) -> None:
        first = lambda q: q.where("a", 1)  # noqa: E731
        second = lambda q: q.where("b", 2)  # noqa: E731
        query = Article.with_({"remarks": first}).with_({"remarks": second}).with_("remarks")
        assert dict(query.eager_loads)["remarks"] is second

    def test_without_drops_nested_paths(self) -> None:
        query = Writer.with_("articles.remarks", "articles.writer").without("articles")
        assert query.eager_loads == ()
