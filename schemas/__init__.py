"""
Pydantic schemas for data validation and serialization.

Schemas:
    normalized: One validated metric row per (ASIN, search query, window)
    api: API endpoint response schemas

Usage:
    from schemas.normalized import MetricRowCreate
    from schemas.api import HealthCheckResponse, DownloadStatsResponse

Example:
    row = MetricRowCreate(
        amazon_seller_id="A1B2C3",
        seller_id=42,
        asin="B000TEST01",
        start_date="2025-01-05",
        end_date="2025-01-11",
        asin_click_count=None,
    )

    # Missing counts default to zero
    assert row.asin_click_count == 0
"""

__all__ = [
    "MetricRowCreate",
    "HealthCheckResponse",
    "DownloadStatsResponse",
    "RunResponse",
    "ErrorResponse",
]
