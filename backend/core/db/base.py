"""
Base repository for the SQLite-backed collaborators

Repository methods are async so the tracking core can await them like
any other collaborator; the sqlite calls themselves are short and run
inline.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from core.logger import get_logger

logger = get_logger(__name__)


class BaseRepository:
    """Connection handling, error logging and row conversion shared by every table"""

    table: str = ""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        logger.debug(f"Initialized {self.__class__.__name__} with db_path: {db_path}")

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Connection with Row factory; multi-statement writes commit themselves

        Example:
            with self._get_conn() as conn:
                conn.execute("UPDATE entries SET end_time = ? WHERE id = ?", ...)
                conn.commit()
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _execute_query(
        self,
        query: str,
        params: Optional[tuple] = None,
        fetch_one: bool = False,
        fetch_all: bool = False,
    ) -> Optional[Any]:
        """
        Returns:
            The row / rows when fetching, otherwise the affected row count
        """
        try:
            with self._get_conn() as conn:
                cursor = conn.execute(query, params or ())
                if fetch_one:
                    return cursor.fetchone()
                if fetch_all:
                    return cursor.fetchall()
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(
                f"Database error in {self.__class__.__name__}: {e} "
                f"(query: {' '.join(query.split())}, params: {params})"
            )
            raise

    def _update_columns(self, row_id: str, updates: Dict[str, Any]) -> int:
        """UPDATE <table> SET ... WHERE id = ?; column names come from an allow-list"""
        if not updates:
            return 0
        assignments = ", ".join(f"{column} = ?" for column in updates)
        return self._execute_query(
            f"UPDATE {self.table} SET {assignments} WHERE id = ?",
            tuple(updates.values()) + (row_id,),
        )

    def _delete_by_id(self, row_id: str) -> bool:
        return bool(self._execute_query(f"DELETE FROM {self.table} WHERE id = ?", (row_id,)))

    def _row_to_dict(self, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        return dict(row)

    @staticmethod
    def _to_iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value is not None else None

    @staticmethod
    def _as_aware(value: datetime) -> datetime:
        """Naive datetimes are taken as local time"""
        return value if value.tzinfo is not None else value.astimezone()

    @staticmethod
    def _from_iso(value: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(value) if value else None
