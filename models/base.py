from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class ReportPeriod(str, enum.Enum):
    """Report granularity pulled per cron job"""
    WEEK = "WEEK"
    MONTH = "MONTH"
    QUARTER = "QUARTER"

    @property
    def prefix(self) -> str:
        """Column prefix used by per-period fields"""
        return PERIOD_PREFIX[self]


PERIOD_PREFIX = {
    ReportPeriod.WEEK: "weekly",
    ReportPeriod.MONTH: "monthly",
    ReportPeriod.QUARTER: "quarterly",
}


class PullStatus(enum.IntEnum):
    """Per-period pull status of a cron job"""
    NOT_STARTED = 0
    SUCCESS = 1
    FAILED = 2
    RETRY_FAILED = 3
    IN_PROGRESS = 4


class DownloadStatus(str, enum.Enum):
    """Report document download status"""
    PENDING = "PENDING"
    DOWNLOADING = "DOWNLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProcessStatus(str, enum.Enum):
    """Report document import status"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    FAILED_PARTIAL = "FAILED_PARTIAL"


REPROCESSABLE_STATUSES = (
    ProcessStatus.PENDING,
    ProcessStatus.FAILED,
    ProcessStatus.FAILED_PARTIAL,
)


class DataAvailability(enum.IntEnum):
    """ASIN rollup availability flag per period"""
    UNKNOWN = 0
    CURRENT_PERIOD = 1
    STALE_OR_ABSENT = 2


class AsinPullStatus(enum.IntEnum):
    """Per-ASIN pull status"""
    PENDING = 0
    IN_PROGRESS = 1
    COMPLETED = 2
    FAILED = 3


class ActivityStatus(enum.IntEnum):
    """Cron activity log outcome"""
    STARTED = 0
    SUCCESS = 1
    FAILED = 2
    WILL_RETRY = 3
