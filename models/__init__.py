"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (ReportPeriod, PullStatus,
          DownloadStatus, ProcessStatus, DataAvailability, AsinPullStatus)
    tenant: Root-store routing tables (users, databases, mapping, timezones)
    cron_job: One pull cycle per seller with per-period status columns
    cron_log: Activity audit trail of every attempt
    download_record: Lifecycle of one report document
    metrics: Weekly / monthly / quarterly metric rows
    asin_rollup: Per-ASIN latest coverage and availability

Database Schema:
    The routing tables are read from the root store only. Every other
    table exists once per tenant database; tenant 0 uses the root store.

Usage:
    from models import CronJob, DownloadRecord, SellerAsin
    from models.base import ReportPeriod, PullStatus

Example:
    job = CronJob(
        amazon_seller_id="A1B2C3",
        seller_id=42,
        asin_list=["B001", "B002"],
    )
    session.add(job)
    await session.commit()
"""

from models.base import (
    Base,
    ReportPeriod,
    PullStatus,
    DownloadStatus,
    ProcessStatus,
    DataAvailability,
    AsinPullStatus,
    ActivityStatus,
)
from models.tenant import Timezone, User, UserDatabase, UserDatabaseMapping
from models.cron_job import CronJob
from models.cron_log import CronLog
from models.download_record import DownloadRecord
from models.metrics import WeeklyMetric, MonthlyMetric, QuarterlyMetric, metric_model_for
from models.asin_rollup import SellerAsin

__all__ = [
    "Base",
    "ReportPeriod",
    "PullStatus",
    "DownloadStatus",
    "ProcessStatus",
    "DataAvailability",
    "AsinPullStatus",
    "ActivityStatus",
    "Timezone",
    "User",
    "UserDatabase",
    "UserDatabaseMapping",
    "CronJob",
    "CronLog",
    "DownloadRecord",
    "WeeklyMetric",
    "MonthlyMetric",
    "QuarterlyMetric",
    "metric_model_for",
    "SellerAsin",
]
