"""
Database module - Repository pattern implementation

This module provides:
1. Individual Repository classes for each collaborator the tracking core
   consumes (projects, rules, entries, AI usage ledger)
2. Unified DatabaseManager that aggregates all repositories
3. Global get_db() and switch_database() functions for the runtime layer
"""

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Dict, Optional

from core.logger import get_logger

from . import schema
from .ai_usage import AIUsageRepository
from .base import BaseRepository
from .entries import EntriesRepository
from .projects import ProjectsRepository
from .rules import RulesRepository

logger = get_logger(__name__)


class DatabaseManager:
    """
    Opens (and creates) one SQLite file and exposes a repository per table

    Example:
        db = get_db()
        projects = await db.projects.find_all()
        await db.entries.end_entry(entry_id)
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

        self.projects = ProjectsRepository(self.db_path)
        self.rules = RulesRepository(self.db_path)
        self.entries = EntriesRepository(self.db_path)
        self.ai_usage = AIUsageRepository(self.db_path)

        logger.debug(f"✓ DatabaseManager initialized with path: {self.db_path}")

    def _initialize_database(self) -> None:
        """Create tables and indexes if missing"""
        try:
            with closing(sqlite3.connect(str(self.db_path))) as conn:
                for statement in (*schema.ALL_TABLES, *schema.ALL_INDEXES):
                    conn.execute(statement)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize database schema at {self.db_path}: {e}", exc_info=True)
            raise

        logger.debug(
            f"✓ Database schema ready: {len(schema.ALL_TABLES)} tables, "
            f"{len(schema.ALL_INDEXES)} indexes"
        )

    def get_table_counts(self) -> Dict[str, int]:
        with closing(sqlite3.connect(str(self.db_path))) as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in schema.TRACKED_TABLES
            }


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db() -> DatabaseManager:
    """
    Get global DatabaseManager instance

    The database path is read from settings (database.path).
    """
    global _db_manager

    if _db_manager is None:
        from core.settings import get_settings

        db_path = get_settings().get_database_path()
        _db_manager = DatabaseManager(db_path)
        logger.debug(f"✓ Global DatabaseManager initialized: {db_path}")

    return _db_manager


def switch_database(new_db_path: str) -> bool:
    """Point the global DatabaseManager at a different file"""
    global _db_manager

    try:
        new_path = Path(new_db_path).expanduser()
        if _db_manager is not None and _db_manager.db_path.resolve() == new_path.resolve():
            logger.debug(f"New path is same as current, no switch needed: {new_db_path}")
            return True

        _db_manager = DatabaseManager(new_path)
        logger.debug(f"✓ Database switched to: {new_db_path}")
        return True

    except Exception as e:
        logger.error(f"Failed to switch database: {e}", exc_info=True)
        return False


__all__ = [
    "BaseRepository",
    "ProjectsRepository",
    "RulesRepository",
    "EntriesRepository",
    "AIUsageRepository",
    "DatabaseManager",
    "get_db",
    "switch_database",
]
