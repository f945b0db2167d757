"""Business logic services."""

from .history import HistoryService
from .listing import ListingService
from .query import QueryRunner
from .resolver import SourceResolver
from .tail import TailEngine

__all__ = [
    "HistoryService",
    "ListingService",
    "QueryRunner",
    "SourceResolver",
    "TailEngine",
]
