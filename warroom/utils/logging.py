"""
Category-aware logging for the war-room service

Each module asks for a logger tagged with one category:

    logger = get_logger(__name__, category="refresh")

LOG_CATEGORIES (comma separated, e.g. ``refresh,store``) restricts output to
those categories; unset means everything. LOG_LEVEL sets the threshold.
Records passing the filter carry a ``category`` attribute.
"""

import logging
from typing import FrozenSet, Optional

from warroom.config import settings

CATEGORIES = ("refresh", "store", "upstream", "stream", "sync", "system")
DEFAULT_CATEGORY = "system"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# WARN is accepted as a spelling of WARNING
_LEVEL_ALIASES = {"WARN": "WARNING"}


def resolve_level(name: Optional[str]) -> int:
    """Map a level name to its numeric value, INFO when unknown."""
    key = (name or "INFO").strip().upper()
    level = logging.getLevelName(_LEVEL_ALIASES.get(key, key))
    return level if isinstance(level, int) else logging.INFO


def parse_categories(raw: Optional[str]) -> Optional[FrozenSet[str]]:
    """``"refresh, Store"`` -> ``{"refresh", "store"}``; None/blank -> None."""
    if not raw:
        return None
    names = frozenset(part.strip().lower() for part in raw.split(",") if part.strip())
    return names or None


class CategoryFilter(logging.Filter):
    """Drops records whose logger category is not enabled."""

    def __init__(self, category: Optional[str], enabled: Optional[FrozenSet[str]]):
        super().__init__()
        self.category = (category or DEFAULT_CATEGORY).lower()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        record.category = self.category
        return self.enabled is None or self.category in self.enabled


def configure_logging(level: Optional[str] = None) -> None:
    """Root handler setup for the service process and the watch script."""
    logging.basicConfig(
        level=resolve_level(level or settings.log_level),
        format=LOG_FORMAT,
    )


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """Logger for ``name`` filtered by ``category`` (default: system)."""
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(settings.log_level))

    # Repeated calls replace the filter instead of stacking another one
    for existing in [f for f in logger.filters if isinstance(f, CategoryFilter)]:
        logger.removeFilter(existing)
    logger.addFilter(CategoryFilter(category, parse_categories(settings.log_categories)))
    return logger
