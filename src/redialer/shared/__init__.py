"""Shared infrastructure modules."""

from redialer.shared.database import Base, DatabaseManager, get_database_manager
from redialer.shared.logging import get_logger, setup_logging

__all__ = [
    "Base",
    "DatabaseManager",
    "get_database_manager",
    "get_logger",
    "setup_logging",
]
