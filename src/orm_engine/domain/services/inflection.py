"""Naming conventions: snake-casing and English pluralization of type names."""

from __future__ import annotations

import re
from functools import lru_cache

_IRREGULAR = {
    "person": "people",
    "man": "men",
    "woman": "women",
    "child": "children",
    "mouse": "mice",
    "goose": "geese",
    "ox": "oxen",
}
_UNCOUNTABLE = frozenset({"data", "equipment", "information", "media", "series", "species", "news"})

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


@lru_cache(maxsize=512)
def snake_case(name: str) -> str:
    """Convert "BlogPost" / "blogPost" to "blog_post"."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


@lru_cache(maxsize=512)
def plural(word: str) -> str:
    """Pluralize the last underscore-separated segment of word."""
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""
    lower = last.lower()
    if lower in _UNCOUNTABLE:
        return word
    if lower in _IRREGULAR:
        return prefix + _IRREGULAR[lower]
    if re.search(r"[^aeiou]y$", lower):
        return prefix + last[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        return prefix + last + "es"
    return prefix + last + "s"


@lru_cache(maxsize=512)
def singular(word: str) -> str:
    """Inverse of plural() for the forms it produces."""
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""
    lower = last.lower()
    if lower in _UNCOUNTABLE:
        return word
    for one, many in _IRREGULAR.items():
        if lower == many:
            return prefix + one
    if lower.endswith("ies") and len(lower) > 3:
        return prefix + last[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", lower):
        return prefix + last[:-2]
    if lower.endswith("s") and not lower.endswith("ss"):
        return prefix + last[:-1]
    return word


def table_name_for(class_name: str) -> str:
    """Default table of an entity type: pluralized snake-case class name."""
    return plural(snake_case(class_name))
