from sqlalchemy import Column, Integer, String, DateTime, Boolean, SmallInteger, Index
from datetime import datetime
from models.base import Base, ReportPeriod, PERIOD_PREFIX, DataAvailability, AsinPullStatus


class SellerAsin(Base):
    """
    Per (seller, ASIN) rollup of the latest imported coverage per period.

    Purpose:
    - latest_range_<period>: free-text "start - end" of the latest import
    - <period>_data_available: DataAvailability flag
    - <period>_pull_status / start / end: last pull attempt per period
    - last_pull_status: aggregate completion once all periods settled
    """
    __tablename__ = "seller_asins"

    id = Column(Integer, primary_key=True, autoincrement=True)

    seller_id = Column(Integer, nullable=False)
    amazon_seller_id = Column(String(100), nullable=False)
    asin = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Latest imported coverage
    latest_range_weekly = Column(String(255), nullable=True)
    latest_range_monthly = Column(String(255), nullable=True)
    latest_range_quarterly = Column(String(255), nullable=True)
    weekly_data_available = Column(SmallInteger, default=int(DataAvailability.UNKNOWN), nullable=False)
    monthly_data_available = Column(SmallInteger, default=int(DataAvailability.UNKNOWN), nullable=False)
    quarterly_data_available = Column(SmallInteger, default=int(DataAvailability.UNKNOWN), nullable=False)

    # Last pull per period
    weekly_pull_status = Column(SmallInteger, nullable=True)
    weekly_pull_started_at = Column(DateTime, nullable=True)
    weekly_pull_ended_at = Column(DateTime, nullable=True)
    monthly_pull_status = Column(SmallInteger, nullable=True)
    monthly_pull_started_at = Column(DateTime, nullable=True)
    monthly_pull_ended_at = Column(DateTime, nullable=True)
    quarterly_pull_status = Column(SmallInteger, nullable=True)
    quarterly_pull_started_at = Column(DateTime, nullable=True)
    quarterly_pull_ended_at = Column(DateTime, nullable=True)

    # Aggregate across periods
    last_pull_status = Column(SmallInteger, default=int(AsinPullStatus.PENDING), nullable=False)
    last_pull_started_at = Column(DateTime, nullable=True)
    last_pull_ended_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_seller_asin_unique", "seller_id", "amazon_seller_id", "asin", unique=True),
    )


def rollup_columns(period: ReportPeriod):
    """(range column, availability column) for a report period"""
    prefix = PERIOD_PREFIX[ReportPeriod(period)]
    return f"latest_range_{prefix}", f"{prefix}_data_available"


def pull_status_columns(period=None):
    """(status, started, ended) columns; period=None selects the aggregate"""
    if period is None:
        return "last_pull_status", "last_pull_started_at", "last_pull_ended_at"
    prefix = PERIOD_PREFIX[ReportPeriod(period)]
    return f"{prefix}_pull_status", f"{prefix}_pull_started_at", f"{prefix}_pull_ended_at"
