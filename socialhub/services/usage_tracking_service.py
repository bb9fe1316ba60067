"""
Usage Tracking Service
Daily per-tenant counters (messages, posts, api_calls) used for plan enforcement
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from socialhub.db.models import UsageRecord

logger = logging.getLogger(__name__)

METRIC_MESSAGES = "messages"
METRIC_POSTS = "posts"
METRIC_API_CALLS = "api_calls"


class UsageTrackingService:
    """Increments and reads UsageRecord rows; the caller owns the commit"""

    def __init__(self, db: Session):
        self.db = db

    def _get_or_create(self, tenant_id: int, metric: str, period_date: date) -> UsageRecord:
        record = self.db.query(UsageRecord).filter(
            UsageRecord.tenant_id == tenant_id,
            UsageRecord.metric == metric,
            UsageRecord.period_date == period_date,
        ).first()
        if record is not None:
            return record

        try:
            with self.db.begin_nested():
                record = UsageRecord(tenant_id=tenant_id, metric=metric, period_date=period_date, quantity=0)
                self.db.add(record)
        except IntegrityError:
            # Another worker created today's row first
            record = self.db.query(UsageRecord).filter(
                UsageRecord.tenant_id == tenant_id,
                UsageRecord.metric == metric,
                UsageRecord.period_date == period_date,
            ).one()
        return record

    def increment_usage(self, tenant_id: int, metric: str, quantity: int = 1, period_date: Optional[date] = None) -> None:
        """
        Add to today's counter for a tenant metric

        Args:
            tenant_id: Tenant being charged
            metric: Counter name, e.g. "messages"
            quantity: Amount to add
            period_date: Day bucket, defaults to today (UTC)
        """
        period_date = period_date or datetime.now(timezone.utc).date()
        record = self._get_or_create(tenant_id, metric, period_date)

        self.db.query(UsageRecord).filter(UsageRecord.id == record.id).update(
            {UsageRecord.quantity: UsageRecord.quantity + quantity},
            synchronize_session=False,
        )
        self.db.expire(record, ["quantity"])
        logger.debug(f"Usage tracked: tenant={tenant_id}, metric={metric}, quantity={quantity}")

    def get_usage(self, tenant_id: int, metric: str, period_date: Optional[date] = None) -> int:
        period_date = period_date or datetime.now(timezone.utc).date()
        record = self.db.query(UsageRecord).filter(
            UsageRecord.tenant_id == tenant_id,
            UsageRecord.metric == metric,
            UsageRecord.period_date == period_date,
        ).first()
        return record.quantity if record else 0
