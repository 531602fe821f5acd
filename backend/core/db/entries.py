"""
Entries Repository - Handles all work-entry database operations
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from core.logger import get_logger
from models.entities import SplitResult, WorkEntry

from .base import BaseRepository

logger = get_logger(__name__)

_UPDATABLE_FIELDS = (
    "project_id",
    "start_time",
    "end_time",
    "confidence",
    "reasoning",
    "subtask",
    "is_manual",
    "is_work",
)


class EntriesRepository(BaseRepository):
    """Repository for managing work entries in the database"""

    table = "entries"

    def _to_entry(self, row) -> WorkEntry:
        data = self._row_to_dict(row)
        return WorkEntry(
            id=data["id"],
            project_id=data["project_id"],
            start_time=self._from_iso(data["start_time"]),
            end_time=self._from_iso(data["end_time"]),
            confidence=data["confidence"],
            reasoning=data["reasoning"],
            subtask=data["subtask"],
            is_manual=bool(data["is_manual"]),
            is_work=bool(data["is_work"]),
        )

    async def _insert(self, entry: WorkEntry) -> WorkEntry:
        self._execute_query(
            """
            INSERT INTO entries (
                id, project_id, start_time, end_time, confidence,
                reasoning, subtask, is_manual, is_work
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.project_id,
                self._to_iso(entry.start_time),
                self._to_iso(entry.end_time),
                entry.confidence,
                entry.reasoning,
                entry.subtask,
                int(entry.is_manual),
                int(entry.is_work),
            ),
        )
        return entry

    async def create(
        self,
        project_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        confidence: int = 0,
        reasoning: Optional[str] = None,
        is_work: bool = True,
        subtask: Optional[str] = None,
        is_manual: bool = False,
    ) -> WorkEntry:
        """Open a new entry; end_time stays NULL until end_entry()"""
        entry = WorkEntry(
            id=uuid.uuid4().hex,
            project_id=project_id,
            start_time=start_time or datetime.now().astimezone(),
            confidence=confidence,
            reasoning=reasoning,
            subtask=subtask,
            is_manual=is_manual,
            is_work=is_work,
        )
        await self._insert(entry)
        logger.debug(f"Created entry {entry.id} (project={project_id}, confidence={confidence})")
        return entry

    async def find_by_id(self, entry_id: str) -> Optional[WorkEntry]:
        row = self._execute_query(
            "SELECT * FROM entries WHERE id = ?", (entry_id,), fetch_one=True
        )
        return self._to_entry(row) if row else None

    async def find_current(self) -> Optional[WorkEntry]:
        """Most recent entry that has not been ended"""
        row = self._execute_query(
            """
            SELECT * FROM entries
            WHERE end_time IS NULL
            ORDER BY start_time DESC
            LIMIT 1
            """,
            fetch_one=True,
        )
        return self._to_entry(row) if row else None

    async def find_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[WorkEntry]:
        rows = self._execute_query(
            """
            SELECT * FROM entries
            WHERE start_time >= ? AND start_time < ?
            ORDER BY start_time ASC
            """,
            (self._to_iso(start), self._to_iso(end)),
            fetch_all=True,
        )
        return [self._to_entry(row) for row in rows]

    async def end_entry(
        self, entry_id: str, end_time: Optional[datetime] = None
    ) -> Optional[WorkEntry]:
        end_time = end_time or datetime.now().astimezone()
        self._execute_query(
            "UPDATE entries SET end_time = ? WHERE id = ?",
            (self._to_iso(end_time), entry_id),
        )
        return await self.find_by_id(entry_id)

    async def update(self, entry_id: str, **fields: Any) -> Optional[WorkEntry]:
        """Partial update; unknown field names are ignored"""
        updates = {k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS}
        if not updates:
            return await self.find_by_id(entry_id)

        for column in ("start_time", "end_time"):
            if isinstance(updates.get(column), datetime):
                updates[column] = self._to_iso(updates[column])
        for column in ("is_manual", "is_work"):
            if column in updates:
                updates[column] = int(bool(updates[column]))

        self._update_columns(entry_id, updates)
        return await self.find_by_id(entry_id)

    async def delete(self, entry_id: str) -> bool:
        deleted = self._delete_by_id(entry_id)
        if deleted:
            logger.debug(f"Deleted entry {entry_id}")
        return deleted

    async def split(self, entry_id: str, split_time: datetime) -> SplitResult:
        """
        Split one entry into two at split_time

        The original entry becomes the "before" half ending at split_time.
        The "after" half keeps the project, confidence, subtask and work flag
        and inherits the original end time (None for an ongoing entry).

        Raises:
            ValueError: unknown entry or split_time outside the entry
        """
        entry = await self.find_by_id(entry_id)
        if entry is None:
            raise ValueError(f"Entry not found: {entry_id}")

        split_time = self._as_aware(split_time)
        if split_time <= self._as_aware(entry.start_time):
            raise ValueError("Split time must be after the entry start time")
        if entry.end_time is not None and split_time >= self._as_aware(entry.end_time):
            raise ValueError("Split time must be before the entry end time")

        after = WorkEntry(
            id=uuid.uuid4().hex,
            project_id=entry.project_id,
            start_time=split_time,
            end_time=entry.end_time,
            confidence=entry.confidence,
            reasoning=entry.reasoning,
            subtask=entry.subtask,
            is_manual=entry.is_manual,
            is_work=entry.is_work,
        )

        with self._get_conn() as conn:
            conn.execute(
                "UPDATE entries SET end_time = ? WHERE id = ?",
                (self._to_iso(split_time), entry_id),
            )
            conn.execute(
                """
                INSERT INTO entries (
                    id, project_id, start_time, end_time, confidence,
                    reasoning, subtask, is_manual, is_work
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    after.id,
                    after.project_id,
                    self._to_iso(after.start_time),
                    self._to_iso(after.end_time),
                    after.confidence,
                    after.reasoning,
                    after.subtask,
                    int(after.is_manual),
                    int(after.is_work),
                ),
            )
            conn.commit()

        before = entry.model_copy(update={"end_time": split_time})
        logger.info(f"Split entry {entry_id} at {split_time.isoformat()} -> {after.id}")
        return SplitResult(before=before, after=after)
