"""Statement classification.

Executed statements are labelled select / insert / update / delete / other
for metrics, tracing and error context. Classification parses the statement
with sqlglot's MySQL dialect and falls back to the leading keyword when the
parser rejects the text (raw fragments, vendor commands).
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError


class StatementType(str, Enum):
    """Kinds of statement distinguished by the engine."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    OTHER = "other"


_KEYWORDS = {
    "select": StatementType.SELECT,
    "with": StatementType.SELECT,
    "insert": StatementType.INSERT,
    "replace": StatementType.INSERT,
    "update": StatementType.UPDATE,
    "delete": StatementType.DELETE,
}


@lru_cache(maxsize=2048)
def classify_statement(sql: str) -> StatementType:
    """Classify a statement by its top-level expression."""
    try:
        expression = sqlglot.parse_one(sql, read="mysql")
    except SqlglotError:
        return _classify_by_keyword(sql)

    if isinstance(expression, (exp.Select, exp.Union)):
        return StatementType.SELECT
    if isinstance(expression, exp.Insert):
        return StatementType.INSERT
    if isinstance(expression, exp.Update):
        return StatementType.UPDATE
    if isinstance(expression, exp.Delete):
        return StatementType.DELETE
    return _classify_by_keyword(sql)


def _classify_by_keyword(sql: str) -> StatementType:
    words = sql.lstrip(" (\n\t").split(None, 1)
    if not words:
        return StatementType.OTHER
    return _KEYWORDS.get(words[0].lower(), StatementType.OTHER)
