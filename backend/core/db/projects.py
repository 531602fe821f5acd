"""
Projects Repository - read side of the billable project catalogue
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from core.logger import get_logger
from models.entities import Project

from .base import BaseRepository

logger = get_logger(__name__)


class ProjectsRepository(BaseRepository):
    """Repository for managing projects in the database"""

    table = "projects"

    def _to_project(self, row) -> Project:
        data = self._row_to_dict(row)
        return Project(
            id=data["id"],
            name=data["name"],
            client_name=data["client_name"],
            hourly_rate=data["hourly_rate"],
            color=data["color"],
            is_archived=bool(data["is_archived"]),
            created_at=self._from_iso(data["created_at"]),
        )

    async def find_all(self, include_archived: bool = False) -> List[Project]:
        """Get projects ordered by name"""
        query = "SELECT * FROM projects"
        if not include_archived:
            query += " WHERE is_archived = 0"
        query += " ORDER BY name COLLATE NOCASE ASC"
        rows = self._execute_query(query, fetch_all=True)
        return [self._to_project(row) for row in rows]

    async def find_by_id(self, project_id: str) -> Optional[Project]:
        row = self._execute_query(
            "SELECT * FROM projects WHERE id = ?", (project_id,), fetch_one=True
        )
        return self._to_project(row) if row else None

    async def create(
        self,
        name: str,
        client_name: Optional[str] = None,
        hourly_rate: Optional[float] = None,
        color: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Project:
        project = Project(
            id=project_id or uuid.uuid4().hex,
            name=name,
            client_name=client_name,
            hourly_rate=hourly_rate,
            color=color,
            created_at=datetime.now(timezone.utc),
        )
        self._execute_query(
            """
            INSERT INTO projects (id, name, client_name, hourly_rate, color, is_archived, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?)
            """,
            (
                project.id,
                project.name,
                project.client_name,
                project.hourly_rate,
                project.color,
                self._to_iso(project.created_at),
            ),
        )
        logger.debug(f"Created project: {project.name} ({project.id})")
        return project

    async def archive(self, project_id: str) -> bool:
        return bool(self._update_columns(project_id, {"is_archived": 1}))
