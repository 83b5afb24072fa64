"""Domain entities - the building blocks of an Active Record model.

Exports:
    - Collection: ordered list of entities with keying/grouping helpers
    - HasAttributes, accessor, mutator: the attribute store
    - Relation, RelationKind and the declaration helpers
"""

from orm_engine.domain.entities.attributes import HasAttributes, accessor, mutator
from orm_engine.domain.entities.collection import Collection
from orm_engine.domain.entities.relation import (
    Relation,
    RelationKind,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    morph_many,
    morph_one,
    morph_to,
)

__all__ = [
    "Collection",
    "HasAttributes",
    "Relation",
    "RelationKind",
    "accessor",
    "belongs_to",
    "belongs_to_many",
    "has_many",
    "has_one",
    "morph_many",
    "morph_one",
    "morph_to",
    "mutator",
]
