"""
Royal Road plugin – fiction pages, Rising Stars lists and rank movement.
"""

from .diff import diff, focus_window, group_by_day, latest_movement, movement_timeline
from .fetcher import RoyalRoadFetcher
from .handlers import handle
from .jobs import FictionHistoryJob, RisingStarsJob, scrape_single_fiction
from .parser import extract, parse_rising_stars
from .position import estimate_position
from .sinks import SqliteFictionStore

__all__ = [
    "FictionHistoryJob",
    "RisingStarsJob",
    "RoyalRoadFetcher",
    "SqliteFictionStore",
    "diff",
    "estimate_position",
    "extract",
    "focus_window",
    "group_by_day",
    "handle",
    "latest_movement",
    "movement_timeline",
    "parse_rising_stars",
    "scrape_single_fiction",
]
