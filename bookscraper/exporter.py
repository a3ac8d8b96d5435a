"""Write the books of a run to a dated CSV or JSON file.

Usage::

    from bookscraper.exporter import export_csv, export_json

    path = export_csv(run_result.books, "output")   # output/books_2026-02-06.csv
    path = export_json(run_result.books, "output")  # output/books_2026-02-06.json

Both formats share the row shape of :meth:`Book.to_row`: columns
``site, source, isbn, title, authors`` with authors joined by ``"; "``.
An empty run still produces a valid file (header-only CSV, ``[]`` JSON).
"""

from __future__ import annotations

import csv
import json
import logging
from datetime import date
from pathlib import Path
from typing import Callable, Iterable, TextIO

from bookscraper.models import ROW_FIELDS, Book

__all__ = ["export_csv", "export_json", "ExportError"]

logger = logging.getLogger(__name__)

RowWriter = Callable[[TextIO, Iterable[dict]], int]


class ExportError(Exception):
    """Raised when export to file fails."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Export failed for {path}: {reason}")


def _build_filepath(output_dir: Path, extension: str) -> Path:
    """Return ``output_dir/books_<today>.<extension>``, creating the directory."""
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExportError(output_dir, str(exc)) from exc
    return output_dir / f"books_{date.today().isoformat()}.{extension}"


def _write_csv(fh: TextIO, rows: Iterable[dict]) -> int:
    writer = csv.DictWriter(fh, fieldnames=ROW_FIELDS)
    writer.writeheader()
    count = 0
    for row in rows:
        writer.writerow(row)
        count += 1
    return count


def _write_json(fh: TextIO, rows: Iterable[dict]) -> int:
    data = list(rows)
    # keep Cyrillic titles readable in the file
    json.dump(data, fh, indent=2, ensure_ascii=False)
    fh.write("\n")
    return len(data)


def _export(
    books: Iterable[Book],
    output_dir: Path | str,
    extension: str,
    write_rows: RowWriter,
) -> Path:
    filepath = _build_filepath(Path(output_dir), extension)
    newline = "" if extension == "csv" else None
    try:
        with open(filepath, "w", newline=newline, encoding="utf-8") as fh:
            count = write_rows(fh, (book.to_row() for book in books))
    except OSError as exc:
        raise ExportError(filepath, str(exc)) from exc

    logger.info("Exported %d books to %s", count, filepath)
    return filepath


def export_csv(books: Iterable[Book], output_dir: Path | str = Path("output")) -> Path:
    """Write ``books_YYYY-MM-DD.csv`` and return its path.

    Raises:
        ExportError: On I/O failure.
    """
    return _export(books, output_dir, "csv", _write_csv)


def export_json(books: Iterable[Book], output_dir: Path | str = Path("output")) -> Path:
    """Write ``books_YYYY-MM-DD.json`` (a list of row objects) and return its path.

    Raises:
        ExportError: On I/O failure.
    """
    return _export(books, output_dir, "json", _write_json)
