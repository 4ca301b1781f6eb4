"""
Per-ASIN rollup of latest imported coverage and availability per period
"""

from typing import Iterable, Optional
from datetime import date, datetime
from dataclasses import dataclass, field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from models.base import ReportPeriod, DataAvailability
from models.asin_rollup import SellerAsin, rollup_columns
from ingestion.periods import format_range
from core.exceptions import ConfigurationError, TrackingError
import logging

logger = logging.getLogger(__name__)


@dataclass
class RangeUpdate:
    cron_job_id: Optional[int]
    seller_id: int
    amazon_seller_id: str
    report_type: ReportPeriod
    asins: Iterable[str] = field(default_factory=list)
    min_range: Optional[date] = None
    max_range: Optional[date] = None
    is_data_available: DataAvailability = DataAvailability.STALE_OR_ABSENT


class AsinRollupService:
    """Writes the (range, availability) column pair for one period"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def update_ranges(self, change: RangeUpdate) -> int:
        """
        Update rollup rows for ``change.asins``.

        Requires a complete range, or no range with an explicit
        "stale/absent" flag. Returns the number of rows updated.
        """
        asins = list(dict.fromkeys(change.asins))
        if not asins:
            return 0

        range_col, availability_col = rollup_columns(change.report_type)
        availability = DataAvailability(change.is_data_available)
        has_start = change.min_range is not None
        has_end = change.max_range is not None

        if has_start != has_end:
            raise ConfigurationError(
                "Rollup range must have both start and end",
                context={"cron_job_id": change.cron_job_id, "report_type": ReportPeriod(change.report_type).value}
            )
        if not has_start and availability != DataAvailability.STALE_OR_ABSENT:
            raise ConfigurationError(
                "Rollup without a range must be marked stale/absent",
                context={"cron_job_id": change.cron_job_id, "report_type": ReportPeriod(change.report_type).value}
            )

        values = {availability_col: int(availability), "updated_at": datetime.utcnow()}
        if has_start:
            values[range_col] = format_range(change.min_range, change.max_range)

        try:
            result = await self.db.execute(
                update(SellerAsin)
                .where(
                    SellerAsin.amazon_seller_id == change.amazon_seller_id,
                    SellerAsin.seller_id == change.seller_id,
                    SellerAsin.asin.in_(asins),
                )
                .values(**values)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TrackingError(
                "Failed to update ASIN rollup",
                context={"cron_job_id": change.cron_job_id, "report_type": ReportPeriod(change.report_type).value},
                original_exception=e
            )

        updated = result.rowcount or 0
        if updated == 0:
            logger.warning(
                f"ASIN rollup update matched no rows for seller {change.seller_id} "
                f"({ReportPeriod(change.report_type).value}, {len(asins)} ASINs)"
            )
        else:
            logger.info(
                f"Updated {ReportPeriod(change.report_type).value} rollup for {updated} ASINs: "
                f"{values.get(range_col, 'no data')} ({availability.name})"
            )
        return updated
