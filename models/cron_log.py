from sqlalchemy import Column, Integer, String, DateTime, Text, Float, SmallInteger, Index
from datetime import datetime
from models.base import Base


class CronLog(Base):
    """
    Activity audit trail for cron job attempts.

    Purpose:
    - One row per attempt outcome (started, success, failed, will retry)
    - Postmortem of retries with message, report id and execution time
    """
    __tablename__ = "cron_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    cron_job_id = Column(Integer, nullable=False, index=True)
    amazon_seller_id = Column(String(100), nullable=True)
    report_type = Column(String(32), nullable=True)
    action = Column(String(64), nullable=False)

    status = Column(SmallInteger, nullable=False)  # ActivityStatus
    message = Column(Text, nullable=True)
    report_id = Column(String(128), nullable=True)
    report_document_id = Column(String(128), nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    execution_time = Column(Float, nullable=True)
    records_processed = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_cron_log_job_type", "cron_job_id", "report_type", "created_at"),
    )
