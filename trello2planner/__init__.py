"""Migrate Trello boards, cards, comments and attachments into Microsoft Planner."""

from __future__ import annotations

from trello2planner.board_mapper import BoardMapper

# Import CLI from its module
from trello2planner.cli import main
from trello2planner.config import Settings, load_settings

# Import exceptions
from trello2planner.exceptions import (
    ConfigurationError,
    GraphAPIError,
    GraphAuthenticationError,
    GraphNotFoundError,
    GraphPreconditionFailedError,
    GraphRateLimitError,
    GraphServerError,
    TrelloAPIError,
    TrelloAuthenticationError,
    TrelloNotFoundError,
    TrelloRateLimitError,
    TrelloServerError,
)
from trello2planner.file_registry import FileMetaRegistry

# Import logging configuration
from trello2planner.logging_config import setup_logging
from trello2planner.migrator import SyncReport, TrelloToPlannerMigrator
from trello2planner.planner_client import PlannerClient
from trello2planner.rate_limiter import RateLimiter
from trello2planner.snapshots import SnapshotStore
from trello2planner.trello_client import TrelloReader

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "TrelloToPlannerMigrator",
    "TrelloReader",
    "PlannerClient",
    "FileMetaRegistry",
    "SnapshotStore",
    "BoardMapper",
    "RateLimiter",
    "SyncReport",
    "Settings",
    "load_settings",
    "setup_logging",
    # Exceptions
    "TrelloAPIError",
    "TrelloAuthenticationError",
    "TrelloNotFoundError",
    "TrelloRateLimitError",
    "TrelloServerError",
    "GraphAPIError",
    "GraphAuthenticationError",
    "GraphNotFoundError",
    "GraphPreconditionFailedError",
    "GraphRateLimitError",
    "GraphServerError",
    "ConfigurationError",
    # CLI
    "main",
]
