"""ISBN normalization and validation.

Usage::

    from bookscraper.isbn import parse_isbn, pick_isbn

    isbn = parse_isbn("978-5-17-090000-3")
    isbn.value    # '9785170900003'
    isbn.kind     # 13

    parse_isbn(pick_isbn("ISBN 5-17-090000-1, 978-5-17-090000-3"))
"""

from __future__ import annotations

import re
from dataclasses import dataclass

__all__ = [
    "Isbn", "parse_isbn", "pick_isbn",
    "ValidationError", "BadLengthError", "BadDigitError",
    "BadChecksumError", "EmptyFieldError",
]

DIGITS = frozenset("0123456789")
EXPECTED_LENGTHS = "10 or 13"

_TOKEN_SPLIT = re.compile(r"[,;]")
_LABEL = re.compile(r"^\s*ISBN(?:-1[03])?\s*:?\s*", re.IGNORECASE)


class ValidationError(ValueError):
    """Raised when a raw value cannot become a valid model field."""


class BadLengthError(ValidationError):
    """Normalized ISBN has a length other than 10 or 13."""

    def __init__(self, actual: int, expected: str = EXPECTED_LENGTHS) -> None:
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Bad ISBN length: got {actual} characters, expected {expected}"
        )


class BadDigitError(ValidationError):
    """Normalized ISBN contains a character that is not allowed."""

    def __init__(self, position: int, character: str) -> None:
        self.position = position
        self.character = character
        super().__init__(
            f"Bad ISBN character {character!r} at position {position}"
        )


class BadChecksumError(ValidationError):
    """Check digit does not match the ISBN body (strict mode only)."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Bad ISBN check digit: {value}")


class EmptyFieldError(ValidationError):
    """Text field is empty after trimming."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} must not be empty")


# -- Private helpers -------------------------------------------------------

def _normalize(raw: str) -> str:
    """Drop hyphens and whitespace (including NBSP)."""
    return "".join(ch for ch in raw if ch != "-" and not ch.isspace())


def _check_shape(value: str) -> None:
    length = len(value)
    if length not in (10, 13):
        raise BadLengthError(length)

    for position, ch in enumerate(value):
        if ch in DIGITS:
            continue
        if length == 10 and position == 9 and ch == "X":
            continue
        raise BadDigitError(position, ch)


def _isbn10_checksum_ok(value: str) -> bool:
    total = sum((10 - i) * int(ch) for i, ch in enumerate(value[:9]))
    total += 10 if value[9] == "X" else int(value[9])
    return total % 11 == 0


def _isbn13_check_digit(body: str) -> int:
    total = sum(int(ch) * (1 if i % 2 == 0 else 3) for i, ch in enumerate(body[:12]))
    return (10 - total % 10) % 10


# -- Public API ------------------------------------------------------------

@dataclass(frozen=True)
class Isbn:
    """A normalized ISBN-10 or ISBN-13 (separators removed)."""
    value: str

    def __post_init__(self) -> None:
        _check_shape(self.value)

    def __str__(self) -> str:
        return self.value

    @property
    def kind(self) -> int:
        """10 or 13."""
        return len(self.value)

    @property
    def checksum_ok(self) -> bool:
        if self.kind == 10:
            return _isbn10_checksum_ok(self.value)
        return _isbn13_check_digit(self.value) == int(self.value[12])

    def to_isbn13(self) -> "Isbn":
        """Return the ISBN-13 form (978 prefix for ISBN-10 values)."""
        if self.kind == 13:
            return self
        body = "978" + self.value[:9]
        return Isbn(f"{body}{_isbn13_check_digit(body)}")


def parse_isbn(raw: str, *, strict: bool = False) -> Isbn:
    """Normalize *raw* and return an :class:`Isbn`.

    Hyphens and whitespace are removed; a lowercase ``x`` check character
    is upper-cased. With *strict*, the check digit is verified too.

    Raises:
        BadLengthError: Normalized length is not 10 or 13.
        BadDigitError: A character other than an ASCII digit is present
            (``X`` is allowed only as the last character of an ISBN-10).
        BadChecksumError: *strict* is set and the check digit is wrong.
    """
    if not isinstance(raw, str):
        raise BadLengthError(0)

    value = _normalize(raw)
    if len(value) == 10 and value[9] == "x":
        value = value[:9] + "X"

    isbn = Isbn(value)
    if strict and not isbn.checksum_ok:
        raise BadChecksumError(value)
    return isbn


def pick_isbn(raw: str) -> str:
    """Choose one ISBN from text that may list several.

    Tokens are separated by commas or semicolons and may carry an ``ISBN``
    label. The first token with 13 digits wins, otherwise the last token.

    Raises:
        BadLengthError: No token found (``actual=0``).
    """
    tokens = [
        _LABEL.sub("", token).strip()
        for token in _TOKEN_SPLIT.split(raw.replace("\xa0", " "))
    ]
    tokens = [token for token in tokens if token]
    if not tokens:
        raise BadLengthError(0)

    for token in tokens:
        if sum(ch in DIGITS for ch in token) == 13:
            return token
    return tokens[-1]
