"""
AI usage ledger - one row per successful reasoning-service call

Timestamps are stored as UTC ISO strings so that month/day grouping can
be done on the string prefix.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from core.logger import get_logger
from models.base import AIUsageLog, DailyUsage, ModelUsage, MonthlyUsage

from .base import BaseRepository

logger = get_logger(__name__)


class AIUsageRepository(BaseRepository):
    """Repository for the AI usage ledger"""

    table = "ai_usage_logs"

    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(timezone.utc)

    async def record(
        self,
        model: str,
        tokens_in: int,
        tokens_out: int,
        cost: float,
        request_type: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> AIUsageLog:
        created_at = (created_at or self._utcnow()).astimezone(timezone.utc)
        with self._get_conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO ai_usage_logs (model, tokens_in, tokens_out, cost, request_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (model, tokens_in, tokens_out, cost, request_type, created_at.isoformat()),
            )
            conn.commit()
            log_id = cursor.lastrowid

        logger.debug(
            f"Recorded AI usage: {model} in={tokens_in} out={tokens_out} "
            f"cost=${cost:.6f} ({request_type})"
        )
        return AIUsageLog(
            id=log_id,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=cost,
            request_type=request_type,
            created_at=created_at,
        )

    async def monthly_usage(self, year_month: Optional[str] = None) -> MonthlyUsage:
        """
        Aggregate spend for a calendar month

        Args:
            year_month: "YYYY-MM" (UTC); defaults to the current month
        """
        month = year_month or self._utcnow().strftime("%Y-%m")
        rows = self._execute_query(
            """
            SELECT model,
                   COALESCE(SUM(tokens_in), 0) AS tokens_in,
                   COALESCE(SUM(tokens_out), 0) AS tokens_out,
                   COALESCE(SUM(cost), 0) AS cost,
                   COUNT(*) AS request_count
            FROM ai_usage_logs
            WHERE substr(created_at, 1, 7) = ?
            GROUP BY model
            ORDER BY cost DESC
            """,
            (month,),
            fetch_all=True,
        )

        by_model = [
            ModelUsage(
                model=row["model"],
                tokens_in=row["tokens_in"],
                tokens_out=row["tokens_out"],
                cost=row["cost"],
                request_count=row["request_count"],
            )
            for row in rows
        ]
        return MonthlyUsage(
            month=month,
            total_tokens_in=sum(m.tokens_in for m in by_model),
            total_tokens_out=sum(m.tokens_out for m in by_model),
            total_cost=sum(m.cost for m in by_model),
            request_count=sum(m.request_count for m in by_model),
            by_model=by_model,
        )

    async def daily_usage(self, days: int = 30) -> List[DailyUsage]:
        since = (self._utcnow() - timedelta(days=days)).strftime("%Y-%m-%d")
        rows = self._execute_query(
            """
            SELECT substr(created_at, 1, 10) AS day,
                   SUM(tokens_in) AS tokens_in,
                   SUM(tokens_out) AS tokens_out,
                   SUM(cost) AS cost,
                   COUNT(*) AS request_count
            FROM ai_usage_logs
            WHERE substr(created_at, 1, 10) >= ?
            GROUP BY day
            ORDER BY day ASC
            """,
            (since,),
            fetch_all=True,
        )
        return [
            DailyUsage(
                date=row["day"],
                tokens_in=row["tokens_in"],
                tokens_out=row["tokens_out"],
                cost=row["cost"],
                request_count=row["request_count"],
            )
            for row in rows
        ]

    async def usage_by_request_type(self, year_month: Optional[str] = None) -> Dict[str, float]:
        month = year_month or self._utcnow().strftime("%Y-%m")
        rows = self._execute_query(
            """
            SELECT COALESCE(request_type, 'unknown') AS request_type, SUM(cost) AS cost
            FROM ai_usage_logs
            WHERE substr(created_at, 1, 7) = ?
            GROUP BY request_type
            """,
            (month,),
            fetch_all=True,
        )
        return {row["request_type"]: row["cost"] for row in rows}

    async def delete_old_logs(self, days_to_keep: int = 90) -> int:
        cutoff = (self._utcnow() - timedelta(days=days_to_keep)).isoformat()
        deleted = self._execute_query(
            "DELETE FROM ai_usage_logs WHERE created_at < ?", (cutoff,)
        )
        if deleted:
            logger.info(f"Deleted {deleted} AI usage logs older than {days_to_keep} days")
        return deleted
