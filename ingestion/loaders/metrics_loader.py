"""
Load normalized metric rows into the period tables with replace-not-duplicate semantics
"""

from typing import List, Optional, Set, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, and_, or_
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from models.base import ReportPeriod
from models.metrics import metric_model_for
from schemas.normalized import MetricRowCreate
from core.config import settings
from core.exceptions import DatabaseConnectionError, DatabaseError, DeadlockError
import logging

logger = logging.getLogger(__name__)


class MetricsLoader:
    """
    Load metric rows idempotently.

    Ensures:
    - Rows colliding on (seller_id, asin, start_date, end_date) are deleted first
    - Deletes run in bounded batches
    - Delete and insert commit together
    """

    def __init__(self, db_session: AsyncSession, delete_batch_size: Optional[int] = None):
        self.db = db_session
        self.delete_batch_size = delete_batch_size or settings.DELETE_BATCH_SIZE

    async def load(self, period: ReportPeriod, rows: List[MetricRowCreate]) -> int:
        """
        Replace rows for every incoming logical key, then bulk insert.

        Returns:
            Number of rows inserted
        """
        if not rows:
            return 0

        model = metric_model_for(period)

        try:
            deleted = await self._delete_existing(model, rows)
            self.db.add_all([model(**row.dict()) for row in rows])
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            context = {
                "operation": "DELETE+INSERT",
                "table_name": model.__tablename__,
                "rows": len(rows),
            }
            raise self._classify(e)("Failed to load metric rows", context=context, original_exception=e)

        logger.info(
            f"Loaded {len(rows)} rows into {model.__tablename__} "
            f"(replaced {deleted} existing)"
        )
        return len(rows)

    async def _delete_existing(self, model, rows: List[MetricRowCreate]) -> int:
        keys: List[Tuple] = sorted(self._unique_keys(rows), key=lambda k: (k[0], k[1], k[2], k[3]))
        deleted = 0

        for i in range(0, len(keys), self.delete_batch_size):
            batch = keys[i:i + self.delete_batch_size]
            conditions = [
                and_(
                    model.seller_id == seller_id,
                    model.asin == asin,
                    model.start_date == start_date,
                    model.end_date == end_date,
                )
                for seller_id, asin, start_date, end_date in batch
            ]
            result = await self.db.execute(delete(model).where(or_(*conditions)))
            deleted += result.rowcount or 0
            logger.debug(f"Delete batch {i // self.delete_batch_size + 1}: {len(batch)} keys")

        return deleted

    @staticmethod
    def _unique_keys(rows: List[MetricRowCreate]) -> Set[Tuple]:
        return {row.logical_key for row in rows}

    @staticmethod
    def _classify(error: SQLAlchemyError):
        """Map a driver error onto the retryable / permanent load errors"""
        if "deadlock" in str(error).lower():
            return DeadlockError
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return DatabaseConnectionError
        return DatabaseError
