"""
Rules Repository - user-authored classification rules
"""

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from core.logger import get_logger
from models.entities import Rule, RuleType

from .base import BaseRepository

logger = get_logger(__name__)

_UPDATABLE_FIELDS = ("rule_type", "pattern", "priority", "is_active", "project_id")


class RulesRepository(BaseRepository):
    """Repository for managing rules in the database"""

    table = "rules"

    def _to_rule(self, row) -> Rule:
        data = self._row_to_dict(row)
        return Rule(
            id=data["id"],
            project_id=data["project_id"],
            rule_type=RuleType(data["rule_type"]),
            pattern=data["pattern"],
            priority=data["priority"],
            is_active=bool(data["is_active"]),
            created_at=self._from_iso(data["created_at"]),
            updated_at=self._from_iso(data["updated_at"]),
        )

    async def find_all(self, active_only: bool = True) -> List[Rule]:
        """Get rules across all projects, highest priority first"""
        query = "SELECT * FROM rules"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY priority DESC, created_at ASC"
        rows = self._execute_query(query, fetch_all=True)
        return [self._to_rule(row) for row in rows]

    async def find_by_project(
        self, project_id: str, active_only: bool = True
    ) -> List[Rule]:
        query = "SELECT * FROM rules WHERE project_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY priority DESC, created_at ASC"
        rows = self._execute_query(query, (project_id,), fetch_all=True)
        return [self._to_rule(row) for row in rows]

    async def find_by_id(self, rule_id: str) -> Optional[Rule]:
        row = self._execute_query(
            "SELECT * FROM rules WHERE id = ?", (rule_id,), fetch_one=True
        )
        return self._to_rule(row) if row else None

    async def create(
        self,
        project_id: str,
        rule_type: RuleType,
        pattern: str,
        priority: int = 0,
        is_active: bool = True,
    ) -> Rule:
        now = datetime.now(timezone.utc)
        rule = Rule(
            id=uuid.uuid4().hex,
            project_id=project_id,
            rule_type=RuleType(rule_type),
            pattern=pattern,
            priority=priority,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self._execute_query(
            """
            INSERT INTO rules (id, project_id, rule_type, pattern, priority, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rule.id,
                rule.project_id,
                rule.rule_type.value,
                rule.pattern,
                rule.priority,
                int(rule.is_active),
                self._to_iso(now),
                self._to_iso(now),
            ),
        )
        logger.debug(f"Created {rule.rule_type.value} rule for project {project_id}")
        return rule

    async def update(self, rule_id: str, **fields: Any) -> Optional[Rule]:
        updates = {k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS}
        if not updates:
            return await self.find_by_id(rule_id)

        if "rule_type" in updates:
            updates["rule_type"] = RuleType(updates["rule_type"]).value
        if "is_active" in updates:
            updates["is_active"] = int(bool(updates["is_active"]))
        updates["updated_at"] = self._to_iso(datetime.now(timezone.utc))

        self._update_columns(rule_id, updates)
        return await self.find_by_id(rule_id)

    async def delete(self, rule_id: str) -> bool:
        return self._delete_by_id(rule_id)
