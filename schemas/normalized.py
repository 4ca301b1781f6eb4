"""
Pydantic schema for one normalized search-query-performance metric row
"""

from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import date


COUNT_FIELDS = (
    "search_query_volume",
    "total_query_impression_count",
    "asin_impression_count",
    "total_click_count",
    "asin_click_count",
    "total_same_day_shipping_click_count",
    "total_one_day_shipping_click_count",
    "total_two_day_shipping_click_count",
    "total_cart_add_count",
    "asin_cart_add_count",
    "total_same_day_shipping_cart_add_count",
    "total_one_day_shipping_cart_add_count",
    "total_two_day_shipping_cart_add_count",
    "total_purchase_count",
    "asin_purchase_count",
    "total_same_day_shipping_purchase_count",
    "total_one_day_shipping_purchase_count",
    "total_two_day_shipping_purchase_count",
)

MEASURE_FIELDS = (
    "search_query_score",
    "asin_impression_share",
    "total_click_rate",
    "asin_click_share",
    "total_median_click_price",
    "asin_median_click_price",
    "total_cart_add_rate",
    "asin_cart_add_share",
    "total_median_cart_add_price",
    "asin_median_cart_add_price",
    "total_purchase_rate",
    "asin_purchase_share",
    "total_median_purchase_price",
    "asin_median_purchase_price",
    "asin_purchase_rate",
)


class MetricRowCreate(BaseModel):
    """
    Schema for creating metric rows with validation.

    Ensures:
    - Logical key (seller_id, asin, start_date, end_date) is present
    - end_date is not before start_date
    - Missing measures are zero rather than NULL
    """

    # Identity (logical key)
    report_id: Optional[str] = None
    amazon_seller_id: str = Field(..., min_length=1, max_length=100)
    seller_id: int
    asin: str = Field(..., min_length=1, max_length=20)
    start_date: date
    end_date: date
    report_date: Optional[date] = None
    currency_code: Optional[str] = Field(None, max_length=8)

    # Search query
    search_query: str = ""
    search_query_score: float = 0
    search_query_volume: int = 0

    # Impressions
    total_query_impression_count: int = 0
    asin_impression_count: int = 0
    asin_impression_share: float = 0

    # Clicks
    total_click_count: int = 0
    total_click_rate: float = 0
    asin_click_count: int = 0
    asin_click_share: float = 0
    total_median_click_price: float = 0
    asin_median_click_price: float = 0
    total_same_day_shipping_click_count: int = 0
    total_one_day_shipping_click_count: int = 0
    total_two_day_shipping_click_count: int = 0

    # Cart adds
    total_cart_add_count: int = 0
    total_cart_add_rate: float = 0
    asin_cart_add_count: int = 0
    asin_cart_add_share: float = 0
    total_median_cart_add_price: float = 0
    asin_median_cart_add_price: float = 0
    total_same_day_shipping_cart_add_count: int = 0
    total_one_day_shipping_cart_add_count: int = 0
    total_two_day_shipping_cart_add_count: int = 0

    # Purchases
    total_purchase_count: int = 0
    total_purchase_rate: float = 0
    asin_purchase_count: int = 0
    asin_purchase_share: float = 0
    total_median_purchase_price: float = 0
    asin_median_purchase_price: float = 0
    asin_purchase_rate: float = 0
    total_same_day_shipping_purchase_count: int = 0
    total_one_day_shipping_purchase_count: int = 0
    total_two_day_shipping_purchase_count: int = 0

    @validator("asin", pre=True)
    def clean_asin(cls, v):
        """Strip whitespace; ASIN is part of the logical key"""
        if v is None:
            raise ValueError("ASIN is required")
        v = str(v).strip()
        if not v:
            raise ValueError("ASIN cannot be empty")
        return v

    @validator("end_date")
    def end_not_before_start(cls, v, values):
        start = values.get("start_date")
        if start and v < start:
            raise ValueError("end_date cannot be before start_date")
        return v

    @validator(*COUNT_FIELDS, pre=True)
    def default_count(cls, v):
        if v is None or v == "":
            return 0
        return int(float(v))

    @validator(*MEASURE_FIELDS, pre=True)
    def default_measure(cls, v):
        if v is None or v == "":
            return 0
        return v

    @validator("search_query", pre=True)
    def default_search_query(cls, v):
        return "" if v is None else str(v)

    @property
    def logical_key(self):
        return (self.seller_id, self.asin, self.start_date, self.end_date)
