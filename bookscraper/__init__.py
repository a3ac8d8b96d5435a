from bookscraper.isbn import Isbn, ValidationError, parse_isbn
from bookscraper.models import Author, Book, Site, Title
from bookscraper.config import ConfigError, RunConfig
from bookscraper.fetcher import BooksFetcher, FetchError
from bookscraper.parser import ExtractionError, SiteParser, parser_for
from bookscraper.scheduler import BatchResult, Scheduler
from bookscraper.runner import RunResult, run
from bookscraper.exporter import export_csv, export_json, ExportError

__all__ = [
    "Isbn", "ValidationError", "parse_isbn",
    "Author", "Book", "Site", "Title",
    "ConfigError", "RunConfig",
    "BooksFetcher", "FetchError",
    "ExtractionError", "SiteParser", "parser_for",
    "BatchResult", "Scheduler",
    "RunResult", "run",
    "export_csv", "export_json", "ExportError",
]
