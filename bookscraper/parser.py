"""Store-specific HTML parsing and catalog discovery.

Pure parsing functions accept HTML/XML strings and return data.
Each store is a :class:`SiteParser` subclass that declares its CSS
selectors, catalog entry point and book-page URL pattern::

    parser = parser_for(Site.LABIRINT)
    for url in parser.discover(fetcher, limit=10):
        book = parser.extract(fetcher.fetch(url), url)
"""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import ClassVar, Iterator, Optional
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup

from bookscraper.config import ConfigError
from bookscraper.fetcher import BooksFetcher, FetchCancelledError, FetchError
from bookscraper.isbn import Isbn, ValidationError, parse_isbn, pick_isbn
from bookscraper.models import Author, Book, Site, Title

__all__ = [
    "SiteParser", "LabirintParser", "IgraSlovParser", "PARSERS", "parser_for",
    "ExtractionError", "MissingFieldError", "InvalidIsbnError", "NoIsbnError",
    "select_text", "parse_listing",
]

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised when a book page cannot be turned into a Book."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Extraction error for {url}: {reason}")


class MissingFieldError(ExtractionError):
    """A selector matched nothing: the page shape differs from expectation."""

    def __init__(self, url: str, field: str) -> None:
        self.field = field
        super().__init__(url, f"missing field '{field}'")


class InvalidIsbnError(ExtractionError):
    """ISBN text was found but failed validation."""

    def __init__(self, url: str, cause: ValidationError) -> None:
        self.cause = cause
        super().__init__(url, f"invalid ISBN: {cause}")


class NoIsbnError(ExtractionError):
    """The page carries no ISBN. Counted as a skip, not a failure."""

    def __init__(self, url: str) -> None:
        super().__init__(url, "no ISBN on page")


# -- Pure parsing functions ------------------------------------------------

def select_text(soup: BeautifulSoup, selector: str) -> list[str]:
    """Return the text of every node matching *selector*, in document order."""
    return [node.get_text() for node in soup.select(selector)]


def parse_listing(text: str, page_url: str) -> tuple[list[str], list[str]]:
    """Parse a sitemap or an HTML listing page.

    Returns:
        ``(nested_sitemaps, page_urls)``. Only a ``<sitemapindex>`` has
        nested sitemaps; a ``<urlset>`` yields its ``<loc>`` values; any
        other document is read as HTML and yields absolute ``a[href]`` links.
    """
    head = text.lstrip()[:512]
    if head.startswith("<?xml") or "<sitemapindex" in head or "<urlset" in head:
        soup = BeautifulSoup(text, "xml")
        index = soup.find("sitemapindex")
        if index is not None:
            nested = [
                loc.get_text(strip=True)
                for sitemap in index.find_all("sitemap")
                for loc in sitemap.find_all("loc", limit=1)
            ]
            return nested, []
        urlset = soup.find("urlset")
        if urlset is not None:
            pages = [
                loc.get_text(strip=True)
                for entry in urlset.find_all("url")
                for loc in entry.find_all("loc", limit=1)
            ]
            return [], pages

    soup = BeautifulSoup(text, "lxml")
    pages = []
    for link in soup.select("a[href]"):
        href = link.get("href", "").strip()
        if href:
            pages.append(urldefrag(urljoin(page_url, href))[0])
    return [], pages


# -- Store parsers ---------------------------------------------------------

class SiteParser:
    """Shared extraction and discovery logic; subclasses supply selectors."""

    SITE: ClassVar[Site]
    CATALOG_URL: ClassVar[str]
    TITLE_SELECTOR: ClassVar[str]
    AUTHOR_SELECTOR: ClassVar[str]
    ISBN_SELECTOR: ClassVar[str]
    BOOK_URL_RE: ClassVar[re.Pattern]
    # substring a nested sitemap URL must contain to be followed
    SITEMAP_HINT: ClassVar[Optional[str]] = None

    def __init__(self, strict_isbn: bool = False) -> None:
        self._strict_isbn = strict_isbn

    def __repr__(self) -> str:
        return f"{type(self).__name__}(strict_isbn={self._strict_isbn})"

    @property
    def site(self) -> Site:
        return self.SITE

    def is_book_url(self, url: str) -> bool:
        return self.BOOK_URL_RE.match(url) is not None

    def follows_sitemap(self, url: str) -> bool:
        return self.SITEMAP_HINT is None or self.SITEMAP_HINT in url

    # -- Extraction --------------------------------------------------------

    def extract(self, html: str, source_url: str) -> Book:
        """Parse one book page.

        Raises:
            MissingFieldError: Title selector matched nothing.
            NoIsbnError: ISBN selector matched nothing or only blank text.
            InvalidIsbnError: ISBN text failed validation.
        """
        soup = BeautifulSoup(html, "lxml")
        title = self.parse_title(soup, source_url)
        authors = self.parse_authors(soup, source_url)
        isbn = self.parse_isbn(soup, source_url)
        return Book(
            site=self.SITE,
            source=source_url,
            isbn=isbn,
            title=title,
            authors=authors,
        )

    def parse_title(self, soup: BeautifulSoup, url: str) -> Title:
        text = "".join(select_text(soup, self.TITLE_SELECTOR))
        try:
            return Title(text)
        except ValidationError:
            raise MissingFieldError(url, "title") from None

    def parse_authors(self, soup: BeautifulSoup, url: str) -> tuple[Author, ...]:
        authors = tuple(
            Author(text) for text in select_text(soup, self.AUTHOR_SELECTOR)
            if text.strip()
        )
        if not authors:
            logger.debug("No authors listed on %s", url)
        return authors

    def parse_isbn(self, soup: BeautifulSoup, url: str) -> Isbn:
        # a blank cell means the store lists no ISBN for this book
        matches = [text for text in select_text(soup, self.ISBN_SELECTOR) if text.strip()]
        if not matches:
            raise NoIsbnError(url)

        raw = matches[-1].replace("\xa0", "")
        try:
            return parse_isbn(pick_isbn(raw), strict=self._strict_isbn)
        except ValidationError as exc:
            raise InvalidIsbnError(url, exc) from exc

    # -- Discovery ---------------------------------------------------------

    def discover(
        self,
        fetcher: BooksFetcher,
        limit: int,
        catalog_url: Optional[str] = None,
    ) -> Iterator[str]:
        """Lazily yield up to *limit* distinct book-page URLs.

        Nested sitemaps are fetched only when the consumer asks for more
        URLs. A listing that cannot be fetched is logged and skipped.

        Raises:
            FetchCancelledError: The run was cancelled.
        """
        if limit < 1:
            return

        seen: set[str] = set()
        visited: set[str] = set()
        pending = deque([catalog_url or self.CATALOG_URL])

        while pending:
            listing_url = pending.popleft()
            if listing_url in visited:
                continue
            visited.add(listing_url)

            try:
                text = fetcher.fetch(listing_url)
            except FetchCancelledError:
                raise
            except FetchError as exc:
                logger.warning(
                    "listing skipped | site=%s | url=%s | error=%s",
                    self.SITE.value, listing_url, exc,
                )
                continue

            nested, pages = parse_listing(text, listing_url)
            followed = [url for url in nested if self.follows_sitemap(url)]
            pending.extendleft(reversed(followed))
            logger.info(
                "Listing %s: %d nested sitemaps, %d links",
                listing_url, len(followed), len(pages),
            )

            for url in pages:
                if url in seen or not self.is_book_url(url):
                    continue
                seen.add(url)
                yield url
                if len(seen) >= limit:
                    return


class LabirintParser(SiteParser):
    """labirint.ru"""

    SITE = Site.LABIRINT
    CATALOG_URL = "https://www.labirint.ru/sitemap.xml"
    TITLE_SELECTOR = "._h1_5o36c_18"
    AUTHOR_SELECTOR = "._left_u86in_12 > div:nth-child(1) > div:nth-child(2)"
    ISBN_SELECTOR = "._right_u86in_12 > div:nth-child(2) > div:nth-child(2)"
    BOOK_URL_RE = re.compile(r"^https?://(?:www\.)?labirint\.ru/books/\d+/?$")


class IgraSlovParser(SiteParser):
    """igraslov.store (WooCommerce)"""

    SITE = Site.IGRA_SLOV
    CATALOG_URL = "https://igraslov.store/sitemap_index.xml"
    TITLE_SELECTOR = ".single-post-title"
    AUTHOR_SELECTOR = (
        "tr.woocommerce-product-attributes-item:nth-child(1)"
        " > td:nth-child(2) > p:nth-child(1) > a:nth-child(1)"
    )
    ISBN_SELECTOR = (
        "tr.woocommerce-product-attributes-item:nth-child(7)"
        " > td:nth-child(2) > p:nth-child(1)"
    )
    BOOK_URL_RE = re.compile(r"^https?://(?:www\.)?igraslov\.store/product/[^/?#]+/?$")
    SITEMAP_HINT = "product-sitemap"


PARSERS: dict[Site, type[SiteParser]] = {
    Site.LABIRINT: LabirintParser,
    Site.IGRA_SLOV: IgraSlovParser,
}


def parser_for(site: Site, strict_isbn: bool = False) -> SiteParser:
    """Return the parser for *site*.

    Raises:
        ConfigError: *site* has no parser.
    """
    try:
        parser_cls = PARSERS[site]
    except (KeyError, TypeError):
        raise ConfigError(f"No parser configured for store {site!r}") from None
    return parser_cls(strict_isbn=strict_isbn)
