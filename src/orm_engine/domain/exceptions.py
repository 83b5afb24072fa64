"""Exception hierarchy for the ORM engine.

All errors raised by the engine derive from OrmError. Validation failure is
the one soft path: Model.save() returns False and fills the error bag, and
ValidationFailedError is only raised by Model.validate_or_fail().
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence


class OrmError(Exception):
    """Base class for every error raised by the ORM engine."""


class ModelNotFoundError(OrmError):
    """Raised when a required single-row fetch returned nothing."""

    def __init__(self, model: str, ids: Sequence[Any] = ()) -> None:
        self.model = model
        self.ids = list(ids)
        if self.ids:
            joined = ", ".join(str(i) for i in self.ids)
            message = f"No query results for model [{model}] {joined}"
        else:
            message = f"No query results for model [{model}]"
        super().__init__(message)


class MultipleRecordsFoundError(OrmError):
    """Raised by sole() when more than one row matched."""

    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__(f"{count} records were found, expected exactly one")


class ValidationFailedError(OrmError):
    """Raised by validate_or_fail() when attribute validation fails."""

    def __init__(self, errors: Mapping[str, list[str]]) -> None:
        self.errors = {field: list(messages) for field, messages in errors.items()}
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Validation failed for: {fields}")


class IllegalStateTransitionError(OrmError):
    """Raised when a guarded attribute moves to a value not reachable from its current one."""

    def __init__(self, attribute: str, from_value: Any, to_value: Any) -> None:
        self.attribute = attribute
        self.from_value = from_value
        self.to_value = to_value
        old = "NULL" if from_value is None else str(from_value)
        new = "NULL" if to_value is None else str(to_value)
        super().__init__(
            f"Invalid state transition for [{attribute}]: cannot transition from [{old}] to [{new}]"
        )


class ConcurrencyConflictError(OrmError):
    """Raised when a versioned update matched no row."""

    def __init__(self, model: str, key: Any, expected_version: Any) -> None:
        self.model = model
        self.key = key
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent update detected on [{model}] {key}: "
            f"expected version {expected_version} is stale"
        )


class ImmutableEntityError(OrmError):
    """Raised on update or delete of an entity type marked immutable."""


class ModelNotPersistedError(OrmError):
    """Raised when an operation needs a stored row but the entity has no key."""


class PersistenceError(OrmError):
    """Wraps a storage-driver error raised while executing a statement.

    Attributes:
        transient: True when the store reports a condition that may clear on
            retry (a lock or busy timeout). Integrity and syntax errors are
            never transient.
    """

    def __init__(self, statement_type: str, sql: str, cause: BaseException, transient: bool = False) -> None:
        self.statement_type = statement_type
        self.sql = sql
        self.cause = cause
        self.transient = transient
        super().__init__(f"{statement_type.upper()} failed: {cause} [SQL: {sql}]")


class TransactionError(OrmError):
    """Raised on commit or rollback without an open transaction."""


class QueryConstructionError(OrmError, ValueError):
    """Raised by the query builder when a predicate is malformed."""


class LazyLoadingViolationError(OrmError):
    """Raised when a relation is lazily loaded while lazy loading is prevented."""

    def __init__(self, model: str, relation: str) -> None:
        self.model = model
        self.relation = relation
        super().__init__(
            f"Attempted to lazy load [{relation}] on model [{model}] but lazy loading is disabled"
        )


class RelationshipContractError(OrmError):
    """Raised by save() when a relation breaks its required/min_count/max_count contract."""

    def __init__(self, model: str, relation: str, violation: str) -> None:
        self.model = model
        self.relation = relation
        self.violation = violation
        super().__init__(f"Relationship [{relation}] on model [{model}] {violation}")


class DecryptionError(OrmError):
    """Raised when an encrypted payload cannot be decrypted."""


class DateFormatError(OrmError, ValueError):
    """Raised when a value cannot be parsed as a date/time."""


class ConfigurationError(OrmError):
    """Raised when the engine or an entity type is misconfigured."""


class MissingEncryptionKeyError(ConfigurationError):
    """Raised when an encrypted cast is used without an encryption key."""


class InvalidCastError(ConfigurationError):
    """Raised when a cast declaration cannot be understood."""


class UnknownRelationError(ConfigurationError):
    """Raised when a relation name is not declared on an entity type."""

    def __init__(self, model: str, relation: str) -> None:
        self.model = model
        self.relation = relation
        super().__init__(f"Call to undefined relationship [{relation}] on model [{model}]")
