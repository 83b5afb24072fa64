"""Page containers returned by Builder.paginate() and simple_paginate()."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterator

from orm_engine.domain.entities.collection import Collection


@dataclass
class Paginator:
    """One page of results without a total count.

    Attributes:
        items: The entities on this page
        per_page: Page size
        current_page: 1-based page number
        has_more: Whether a following page has at least one row
        path: Base URL used by url()
    """

    items: Collection
    per_page: int
    current_page: int
    has_more: bool = False
    path: str = ""
    page_name: str = field(default="page")

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> Any:
        return self.items[index]

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def from_item(self) -> int | None:
        """1-based position of the first item on the page, None when empty."""
        if not self.items:
            return None
        return (self.current_page - 1) * self.per_page + 1

    @property
    def to_item(self) -> int | None:
        if not self.items:
            return None
        return self.from_item + len(self.items) - 1

    def has_more_pages(self) -> bool:
        return self.has_more

    def on_first_page(self) -> bool:
        return self.current_page <= 1

    def url(self, page: int) -> str:
        page = max(1, page)
        separator = "&" if "?" in self.path else "?"
        return f"{self.path}{separator}{self.page_name}={page}"

    def next_page_url(self) -> str | None:
        return self.url(self.current_page + 1) if self.has_more_pages() else None

    def previous_page_url(self) -> str | None:
        return None if self.on_first_page() else self.url(self.current_page - 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_page": self.current_page,
            "data": self.items.to_list(),
            "from": self.from_item,
            "to": self.to_item,
            "per_page": self.per_page,
            "next_page_url": self.next_page_url(),
            "prev_page_url": self.previous_page_url(),
            "path": self.path,
        }


@dataclass
class LengthAwarePaginator(Paginator):
    """One page of results plus the total row count of the query."""

    total: int = 0

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            total=self.total,
            last_page=self.last_page,
            first_page_url=self.url(1),
            last_page_url=self.url(self.last_page),
        )
        return data
