from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, SmallInteger, JSON, Index
from datetime import datetime
from typing import Any, List
from models.base import Base, ReportPeriod, PullStatus, PERIOD_PREFIX


# Per-period field names; the column is "<prefix>_<field>", e.g. weekly_pull_status
PERIOD_FIELDS = (
    "pull_status",
    "running_status",
    "start_date",
    "end_date",
    "report_id",
    "report_document_id",
    "retry_count",
    "last_error",
    "download_completed",
)


class CronJob(Base):
    """
    One scheduled pull cycle for one seller, covering all three periods.

    Purpose:
    - Track request/download/import progress per period
    - Audit trail: rows are never deleted, a new cycle supersedes the old one

    Design:
    - Each period owns the same set of columns, prefixed weekly_/monthly_/quarterly_
    - ``period_value``/``set_period_value`` are the only accessors callers use
    """
    __tablename__ = "cron_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Seller identification
    amazon_seller_id = Column(String(100), nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    asin_list = Column(JSON, nullable=False, default=list)

    # Weekly
    weekly_pull_status = Column(SmallInteger, default=int(PullStatus.NOT_STARTED), nullable=False)
    weekly_running_status = Column(SmallInteger, default=0, nullable=False)
    weekly_start_date = Column(DateTime, nullable=True)
    weekly_end_date = Column(DateTime, nullable=True)
    weekly_report_id = Column(String(128), nullable=True)
    weekly_report_document_id = Column(String(128), nullable=True)
    weekly_retry_count = Column(Integer, default=0, nullable=False)
    weekly_last_error = Column(Text, nullable=True)
    weekly_download_completed = Column(Boolean, default=False, nullable=False)

    # Monthly
    monthly_pull_status = Column(SmallInteger, default=int(PullStatus.NOT_STARTED), nullable=False)
    monthly_running_status = Column(SmallInteger, default=0, nullable=False)
    monthly_start_date = Column(DateTime, nullable=True)
    monthly_end_date = Column(DateTime, nullable=True)
    monthly_report_id = Column(String(128), nullable=True)
    monthly_report_document_id = Column(String(128), nullable=True)
    monthly_retry_count = Column(Integer, default=0, nullable=False)
    monthly_last_error = Column(Text, nullable=True)
    monthly_download_completed = Column(Boolean, default=False, nullable=False)

    # Quarterly
    quarterly_pull_status = Column(SmallInteger, default=int(PullStatus.NOT_STARTED), nullable=False)
    quarterly_running_status = Column(SmallInteger, default=0, nullable=False)
    quarterly_start_date = Column(DateTime, nullable=True)
    quarterly_end_date = Column(DateTime, nullable=True)
    quarterly_report_id = Column(String(128), nullable=True)
    quarterly_report_document_id = Column(String(128), nullable=True)
    quarterly_retry_count = Column(Integer, default=0, nullable=False)
    quarterly_last_error = Column(Text, nullable=True)
    quarterly_download_completed = Column(Boolean, default=False, nullable=False)

    # Cycle
    cron_running_status = Column(SmallInteger, default=1, nullable=False)
    cron_start_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_cron_job_seller_created", "seller_id", "created_at"),
    )

    @staticmethod
    def column_name(period: ReportPeriod, field: str) -> str:
        if field not in PERIOD_FIELDS:
            raise KeyError(f"Unknown period field: {field}")
        return f"{PERIOD_PREFIX[ReportPeriod(period)]}_{field}"

    def period_value(self, period: ReportPeriod, field: str) -> Any:
        return getattr(self, self.column_name(period, field))

    def set_period_value(self, period: ReportPeriod, field: str, value: Any) -> None:
        setattr(self, self.column_name(period, field), value)

    def pull_status(self, period: ReportPeriod) -> PullStatus:
        return PullStatus(self.period_value(period, "pull_status") or 0)

    @property
    def asins(self) -> List[str]:
        return list(self.asin_list or [])
