"""Uniform book record shared by every store parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bookscraper.isbn import EmptyFieldError, Isbn

__all__ = ["Site", "Title", "Author", "Book", "AUTHORS_SEPARATOR", "ROW_FIELDS"]

AUTHORS_SEPARATOR = "; "
ROW_FIELDS = ("site", "source", "isbn", "title", "authors")


class Site(str, Enum):
    """Supported bookstores. The value is written to the ``site`` column."""
    LABIRINT = "labirint"
    IGRA_SLOV = "igra_slov"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class _Text:
    value: str

    def __post_init__(self) -> None:
        trimmed = (self.value or "").strip()
        if not trimmed:
            raise EmptyFieldError(type(self).__name__.lower())
        object.__setattr__(self, "value", trimmed)

    def __str__(self) -> str:
        return self.value


class Title(_Text):
    """Trimmed, non-empty book title."""


class Author(_Text):
    """Trimmed, non-empty author name."""


@dataclass(frozen=True)
class Book:
    """A single book extracted from one store page."""
    site: Site
    source: str
    isbn: Isbn
    title: Title
    authors: tuple[Author, ...] = field(default_factory=tuple)

    def to_row(self) -> dict[str, str]:
        """Flatten into the exported row shape."""
        return {
            "site": self.site.value,
            "source": self.source,
            "isbn": self.isbn.value,
            "title": self.title.value,
            "authors": AUTHORS_SEPARATOR.join(a.value for a in self.authors),
        }
