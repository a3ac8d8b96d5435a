"""Run settings: defaults, ``BOOKSCRAPER_*`` environment variables, validation.

Usage::

    from bookscraper.config import RunConfig

    config = RunConfig.from_env().validate()
    config = RunConfig(sites=(Site.LABIRINT,), books_per_store=100).validate()

Every check happens here, before the first request is made.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Iterable, List, Mapping, Optional

from bookscraper.models import Site

__all__ = ["ConfigError", "RunConfig", "parse_sites", "DEFAULT_SITES"]

DEFAULT_SITES = (Site.LABIRINT, Site.IGRA_SLOV)
ENV_PREFIX = "BOOKSCRAPER_"


class ConfigError(ValueError):
    """Invalid run configuration. Raised before any network activity."""


def _site_key(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def parse_sites(names: Iterable[str]) -> List[Site]:
    """Map store identifiers to :class:`Site` members.

    Matching is case-insensitive and treats ``-`` and ``_`` alike, so
    ``igra-slov`` and ``IGRA_SLOV`` both resolve. Duplicates are dropped.
    """
    known = {site.value: site for site in Site}
    sites: List[Site] = []
    for name in names:
        key = _site_key(name)
        if not key:
            continue
        if key not in known:
            raise ConfigError(
                f"Unknown store {name!r}. Known stores: {', '.join(sorted(known))}"
            )
        if known[key] not in sites:
            sites.append(known[key])
    if not sites:
        raise ConfigError("At least one store must be configured")
    return sites


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from None


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = (env.get(ENV_PREFIX + key) or "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{ENV_PREFIX}{key} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class RunConfig:
    """Settings for one scraping run. Frozen; use :func:`dataclasses.replace` to override."""
    sites: tuple[Site, ...] = DEFAULT_SITES
    concurrent_tasks: int = 3
    books_per_store: int = 1500
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    timeout: float = 15.0
    delay_between_requests: float = 0.0
    strict_isbn: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RunConfig":
        """Build a config from ``BOOKSCRAPER_*`` variables (defaults otherwise)."""
        env = os.environ if environ is None else environ
        base = cls()
        stores = (env.get(ENV_PREFIX + "STORES") or "").strip()
        return replace(
            base,
            sites=tuple(parse_sites(stores.split(","))) if stores else base.sites,
            concurrent_tasks=_env_int(env, "CONCURRENT_TASKS", base.concurrent_tasks),
            books_per_store=_env_int(env, "BOOKS_PER_STORE", base.books_per_store),
            max_attempts=_env_int(env, "MAX_ATTEMPTS", base.max_attempts),
            strict_isbn=_env_bool(env, "STRICT_ISBN", base.strict_isbn),
        )

    def validate(self) -> "RunConfig":
        """Return self, or raise :class:`ConfigError` naming the bad setting."""
        if not self.sites:
            raise ConfigError("At least one store must be configured")
        for site in self.sites:
            if not isinstance(site, Site):
                raise ConfigError(f"Unknown store {site!r}")
        for name in ("concurrent_tasks", "books_per_store", "max_attempts"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be >= 1, got {value!r}")
        for name in ("base_delay", "max_delay", "delay_between_requests"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0, got {getattr(self, name)!r}")
        if self.max_delay < self.base_delay:
            raise ConfigError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout!r}")
        return self
