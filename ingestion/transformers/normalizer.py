"""
Transform search-query-performance report documents into validated metric rows
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pydantic import ValidationError as PydanticValidationError
from core.exceptions import DataFormatError
from schemas.normalized import MetricRowCreate
import logging

logger = logging.getLogger(__name__)


class DocumentShape(str, Enum):
    """Shapes a report document arrives in"""
    ARRAY = "array"        # [record, ...]
    RECORDS = "records"    # {"records": [record, ...]}
    DATA_BY_ASIN = "data_by_asin"  # {"reportSpecification": ..., "dataByAsin": [record, ...]}
    SINGLE = "single"      # one inline record object
    EMPTY = "empty"        # a known shape with no records


@dataclass
class TaggedDocument:
    shape: DocumentShape
    records: List[Any]


@dataclass
class NormalizationResult:
    rows: List[MetricRowCreate] = field(default_factory=list)
    total: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    min_start: Optional[date] = None
    max_end: Optional[date] = None

    @property
    def success(self) -> int:
        return len(self.rows)

    @property
    def has_data(self) -> bool:
        return self.total > 0


def tag_document(content: Any) -> TaggedDocument:
    """
    Classify parsed document content into one of the known shapes.

    Raises:
        DataFormatError: If the content matches none of the shapes
    """
    if isinstance(content, list):
        shape = DocumentShape.ARRAY if content else DocumentShape.EMPTY
        return TaggedDocument(shape, content)

    if isinstance(content, dict):
        for key, shape in (("records", DocumentShape.RECORDS), ("dataByAsin", DocumentShape.DATA_BY_ASIN)):
            records = content.get(key)
            if isinstance(records, list):
                return TaggedDocument(shape if records else DocumentShape.EMPTY, records)
        if content.get("startDate") or content.get("searchQueryData"):
            return TaggedDocument(DocumentShape.SINGLE, [content])
        raise DataFormatError(
            "Report document has no records list and is not a record",
            context={"keys": sorted(str(k) for k in content)[:10]}
        )

    raise DataFormatError(
        "Report document must be an array or an object",
        context={"type": type(content).__name__}
    )


class ReportNormalizer:
    """
    Normalize report records into the metric row schema.

    Handles:
    - Nested measure groups flattened into columns
    - Zero defaults for missing measures
    - Currency precedence click price -> cart-add price -> purchase price
    - Covered date range across all accepted rows
    """

    def __init__(
        self,
        amazon_seller_id: str,
        seller_id: int,
        report_id: Optional[str] = None,
        report_date: Optional[date] = None,
    ):
        self.amazon_seller_id = amazon_seller_id
        self.seller_id = seller_id
        self.report_id = report_id
        self.report_date = report_date

    def normalize(self, content: Any) -> NormalizationResult:
        tagged = tag_document(content)
        result = NormalizationResult(total=len(tagged.records))

        if tagged.shape == DocumentShape.EMPTY:
            logger.info(f"No records found in report {self.report_id}")
            return result

        for index, record in enumerate(tagged.records):
            try:
                row = self.build_row(record)
            except (PydanticValidationError, ValueError, TypeError, AttributeError) as e:
                result.failed += 1
                error_detail = {
                    "index": index,
                    "asin": record.get("asin") if isinstance(record, dict) else None,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
                result.errors.append(error_detail)
                logger.warning(
                    f"Skipping record {index} of report {self.report_id}: {type(e).__name__}",
                    extra={"error_context": error_detail}
                )
                continue

            result.rows.append(row)
            if result.min_start is None or row.start_date < result.min_start:
                result.min_start = row.start_date
            if result.max_end is None or row.end_date > result.max_end:
                result.max_end = row.end_date

        logger.info(
            f"Normalized report {self.report_id} ({tagged.shape.value}): "
            f"{result.success}/{result.total} records"
        )
        return result

    def build_row(self, record: Dict[str, Any]) -> MetricRowCreate:
        if not isinstance(record, dict):
            raise TypeError(f"Record must be an object, got {type(record).__name__}")

        sq = record.get("searchQueryData") or {}
        impressions = record.get("impressionData") or {}
        clicks = record.get("clickData") or {}
        cart = record.get("cartAddData") or {}
        purchase = record.get("purchaseData") or {}

        end_date = record.get("endDate")

        return MetricRowCreate(
            report_id=self.report_id,
            amazon_seller_id=self.amazon_seller_id,
            seller_id=self.seller_id,
            asin=record.get("asin") or record.get("ASIN") or "",
            start_date=record.get("startDate"),
            end_date=end_date,
            report_date=self.report_date or end_date,
            currency_code=self._currency_code(clicks, cart, purchase),
            search_query=sq.get("searchQuery"),
            search_query_score=sq.get("searchQueryScore"),
            search_query_volume=sq.get("searchQueryVolume"),
            total_query_impression_count=impressions.get("totalQueryImpressionCount"),
            asin_impression_count=impressions.get("asinImpressionCount"),
            asin_impression_share=impressions.get("asinImpressionShare"),
            total_click_count=clicks.get("totalClickCount"),
            total_click_rate=clicks.get("totalClickRate"),
            asin_click_count=clicks.get("asinClickCount"),
            asin_click_share=clicks.get("asinClickShare"),
            total_median_click_price=self._amount(clicks.get("totalMedianClickPrice")),
            asin_median_click_price=self._amount(clicks.get("asinMedianClickPrice")),
            total_same_day_shipping_click_count=clicks.get("totalSameDayShippingClickCount"),
            total_one_day_shipping_click_count=clicks.get("totalOneDayShippingClickCount"),
            total_two_day_shipping_click_count=clicks.get("totalTwoDayShippingClickCount"),
            total_cart_add_count=cart.get("totalCartAddCount"),
            total_cart_add_rate=cart.get("totalCartAddRate"),
            asin_cart_add_count=cart.get("asinCartAddCount"),
            asin_cart_add_share=cart.get("asinCartAddShare"),
            total_median_cart_add_price=self._amount(cart.get("totalMedianCartAddPrice")),
            asin_median_cart_add_price=self._amount(cart.get("asinMedianCartAddPrice")),
            total_same_day_shipping_cart_add_count=cart.get("totalSameDayShippingCartAddCount"),
            total_one_day_shipping_cart_add_count=cart.get("totalOneDayShippingCartAddCount"),
            total_two_day_shipping_cart_add_count=cart.get("totalTwoDayShippingCartAddCount"),
            total_purchase_count=purchase.get("totalPurchaseCount"),
            total_purchase_rate=purchase.get("totalPurchaseRate"),
            asin_purchase_count=purchase.get("asinPurchaseCount"),
            asin_purchase_share=purchase.get("asinPurchaseShare"),
            total_median_purchase_price=self._amount(purchase.get("totalMedianPurchasePrice")),
            asin_median_purchase_price=self._amount(purchase.get("asinMedianPurchasePrice")),
            asin_purchase_rate=purchase.get("asinPurchaseRate"),
            total_same_day_shipping_purchase_count=purchase.get("totalSameDayShippingPurchaseCount"),
            total_one_day_shipping_purchase_count=purchase.get("totalOneDayShippingPurchaseCount"),
            total_two_day_shipping_purchase_count=purchase.get("totalTwoDayShippingPurchaseCount"),
        )

    @staticmethod
    def _amount(price: Optional[Dict[str, Any]]) -> float:
        if isinstance(price, dict):
            return price.get("amount") or 0
        return 0

    @staticmethod
    def _currency_code(clicks: Dict, cart: Dict, purchase: Dict) -> Optional[str]:
        for price in (
            clicks.get("totalMedianClickPrice"),
            cart.get("totalMedianCartAddPrice"),
            purchase.get("totalMedianPurchasePrice"),
        ):
            if isinstance(price, dict) and price.get("currencyCode"):
                return price["currencyCode"]
        return None
