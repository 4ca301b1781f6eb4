from sqlalchemy import Column, Integer, String, Date, DateTime, Float, BigInteger, Index
from sqlalchemy.orm import declared_attr
from datetime import datetime
from models.base import Base, ReportPeriod


class MetricRowMixin:
    """
    Columns shared by the weekly, monthly and quarterly metric tables.

    Logical key: (seller_id, asin, start_date, end_date). Re-importing a
    window replaces the rows for that key instead of duplicating them.
    """

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    report_id = Column(String(128), nullable=True)
    amazon_seller_id = Column(String(100), nullable=False)
    seller_id = Column(Integer, nullable=False)
    asin = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    report_date = Column(Date, nullable=True)
    currency_code = Column(String(8), nullable=True)

    # Search query
    search_query = Column(String(500), nullable=True)
    search_query_score = Column(Float, default=0)
    search_query_volume = Column(BigInteger, default=0)

    # Impressions
    total_query_impression_count = Column(BigInteger, default=0)
    asin_impression_count = Column(BigInteger, default=0)
    asin_impression_share = Column(Float, default=0)

    # Clicks
    total_click_count = Column(BigInteger, default=0)
    total_click_rate = Column(Float, default=0)
    asin_click_count = Column(BigInteger, default=0)
    asin_click_share = Column(Float, default=0)
    total_median_click_price = Column(Float, default=0)
    asin_median_click_price = Column(Float, default=0)
    total_same_day_shipping_click_count = Column(BigInteger, default=0)
    total_one_day_shipping_click_count = Column(BigInteger, default=0)
    total_two_day_shipping_click_count = Column(BigInteger, default=0)

    # Cart adds
    total_cart_add_count = Column(BigInteger, default=0)
    total_cart_add_rate = Column(Float, default=0)
    asin_cart_add_count = Column(BigInteger, default=0)
    asin_cart_add_share = Column(Float, default=0)
    total_median_cart_add_price = Column(Float, default=0)
    asin_median_cart_add_price = Column(Float, default=0)
    total_same_day_shipping_cart_add_count = Column(BigInteger, default=0)
    total_one_day_shipping_cart_add_count = Column(BigInteger, default=0)
    total_two_day_shipping_cart_add_count = Column(BigInteger, default=0)

    # Purchases
    total_purchase_count = Column(BigInteger, default=0)
    total_purchase_rate = Column(Float, default=0)
    asin_purchase_count = Column(BigInteger, default=0)
    asin_purchase_share = Column(Float, default=0)
    total_median_purchase_price = Column(Float, default=0)
    asin_median_purchase_price = Column(Float, default=0)
    asin_purchase_rate = Column(Float, default=0)
    total_same_day_shipping_purchase_count = Column(BigInteger, default=0)
    total_one_day_shipping_purchase_count = Column(BigInteger, default=0)
    total_two_day_shipping_purchase_count = Column(BigInteger, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @declared_attr
    def __table_args__(cls):
        return (
            Index(f"idx_{cls.__tablename__}_logical_key", "seller_id", "asin", "start_date", "end_date"),
            Index(f"idx_{cls.__tablename__}_seller_asin", "amazon_seller_id", "asin"),
        )


class WeeklyMetric(MetricRowMixin, Base):
    __tablename__ = "sqp_weekly"


class MonthlyMetric(MetricRowMixin, Base):
    __tablename__ = "sqp_monthly"


class QuarterlyMetric(MetricRowMixin, Base):
    __tablename__ = "sqp_quarterly"


METRIC_MODELS = {
    ReportPeriod.WEEK: WeeklyMetric,
    ReportPeriod.MONTH: MonthlyMetric,
    ReportPeriod.QUARTER: QuarterlyMetric,
}


def metric_model_for(period):
    """Return the metric table model for a report period"""
    try:
        return METRIC_MODELS[ReportPeriod(period)]
    except (KeyError, ValueError):
        raise ValueError(f"Invalid report type: {period}")
