from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, BigInteger, Boolean, Index
from datetime import datetime
from models.base import Base, DownloadStatus, ProcessStatus


class DownloadRecord(Base):
    """
    Lifecycle of one concrete report document.

    Purpose:
    - Request -> download -> storage -> import tracking
    - Attempt counters deciding when a document may be (re)processed
    - Never physically deleted; SUCCESS + fully_imported ends the lifecycle

    Design Decisions:
    - file_path is an opaque locator (local path or https URL)
    - process_status is NULL until the document has been downloaded
    """
    __tablename__ = "download_records"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Report identification
    cron_job_id = Column(Integer, nullable=False, index=True)
    report_id = Column(String(128), nullable=True, index=True)
    report_document_id = Column(String(128), nullable=True)
    report_type = Column(String(32), nullable=False)
    amazon_seller_id = Column(String(100), nullable=True)

    # Download
    status = Column(Enum(DownloadStatus), default=DownloadStatus.PENDING, nullable=False, index=True)
    download_attempts = Column(Integer, default=0, nullable=False)
    max_download_attempts = Column(Integer, default=3, nullable=False)
    file_path = Column(Text, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    error_message = Column(Text, nullable=True)
    download_started_at = Column(DateTime, nullable=True)
    download_completed_at = Column(DateTime, nullable=True)

    # Import
    process_status = Column(Enum(ProcessStatus), nullable=True, index=True)
    process_attempts = Column(Integer, default=0, nullable=False)
    max_process_attempts = Column(Integer, default=3, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    fail_count = Column(Integer, default=0, nullable=False)
    total_records = Column(Integer, default=0, nullable=False)
    fully_imported = Column(Boolean, default=False, nullable=False)
    last_process_error = Column(Text, nullable=True)
    last_process_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_download_job_type", "cron_job_id", "report_type", "report_id"),
        Index("idx_download_processable", "status", "process_status", "updated_at"),
    )
