"""Domain services - stateless logic shared by the entity layer.

Exports:
    - MySqlGrammar, CompiledStatement: descriptor to SQL compilation
    - CastSpec, CastKind, parse_cast: attribute cast declarations
    - Encrypter: encryption for the ``encrypted`` cast
    - classify_statement: select/insert/update/delete labelling via sqlglot
"""

from orm_engine.domain.services.casting import CastKind, CastSpec, parse_cast
from orm_engine.domain.services.encryption import Encrypter
from orm_engine.domain.services.grammar import CompiledStatement, MySqlGrammar
from orm_engine.domain.services.statements import StatementType, classify_statement

__all__ = [
    "CastKind",
    "CastSpec",
    "CompiledStatement",
    "Encrypter",
    "MySqlGrammar",
    "StatementType",
    "classify_statement",
    "parse_cast",
]
