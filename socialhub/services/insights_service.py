"""
Channel insights

Pulls daily page (Facebook) or account (Instagram) insights and upserts
them as Insight rows keyed on (channel, metric, date, period).
"""
import logging
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from socialhub.db.models import Channel, ChannelStatus, ChannelType, Insight, utcnow
from socialhub.integrations.constants import INSIGHT_METRIC_NAMES
from socialhub.integrations.registry import get_adapter

logger = logging.getLogger(__name__)

INSIGHT_CHANNEL_TYPES = (ChannelType.FACEBOOK, ChannelType.INSTAGRAM)


def normalize_metric_name(name: str) -> str:
    return INSIGHT_METRIC_NAMES.get(name, name)


def _numeric(value: Any) -> Optional[Decimal]:
    """Breakdown metrics come back as dicts; those are summed"""
    if isinstance(value, dict):
        value = sum(v for v in value.values() if isinstance(v, (int, float)))
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def parse_insights(data: List[Dict[str, Any]]) -> Dict[str, Decimal]:
    """Take the first value of each metric series, keyed by normalized name"""
    parsed = {}
    for metric in data or []:
        name = metric.get("name")
        values = metric.get("values") or []
        if not name or not values:
            continue
        value = _numeric(values[0].get("value", 0))
        if value is not None:
            parsed[normalize_metric_name(name)] = value
    return parsed


def _enqueue_insights(channel_id: int):
    from socialhub.tasks.insights_tasks import fetch_channel_insights

    fetch_channel_insights.apply_async(args=[channel_id])


class InsightsService:
    def __init__(self, db: Session, adapter_factory: Callable = get_adapter):
        self.db = db
        self.adapter_factory = adapter_factory

    def fetch_channel_insights(self, channel_id: int, for_date: Optional[date] = None) -> Dict[str, Decimal]:
        """
        Fetch and store one day of insights for a channel

        Args:
            channel_id: Channel to fetch for
            for_date: Day the values are stored under, defaults to yesterday (UTC)

        Returns:
            Stored metric values; empty for inactive or unsupported channels
        """
        channel = self.db.query(Channel).filter(Channel.id == channel_id).first()
        if channel is None:
            raise LookupError(f"Channel {channel_id} not found")

        if not channel.is_active:
            logger.info(f"Skipping insights for inactive channel {channel_id}")
            return {}
        if channel.type not in INSIGHT_CHANNEL_TYPES:
            return {}

        for_date = for_date or (utcnow().date() - timedelta(days=1))

        adapter = self.adapter_factory(channel)
        try:
            insights = parse_insights(adapter.fetch_insights())
        finally:
            adapter.close()

        for metric, value in insights.items():
            self._upsert(channel, metric, value, for_date)
        self.db.commit()

        logger.info(
            f"Stored {len(insights)} insight metrics for channel {channel_id} on {for_date.isoformat()}",
            extra={"channel_id": channel_id},
        )
        return insights

    def _upsert(self, channel: Channel, metric: str, value: Decimal, for_date: date, period: str = "day") -> Insight:
        filters = (
            Insight.channel_id == channel.id,
            Insight.metric == metric,
            Insight.date == for_date,
            Insight.period == period,
        )
        insight = self.db.query(Insight).filter(*filters).first()
        if insight is not None:
            insight.value = value
            return insight

        try:
            with self.db.begin_nested():
                insight = Insight(
                    tenant_id=channel.tenant_id,
                    channel_id=channel.id,
                    metric=metric,
                    value=value,
                    date=for_date,
                    period=period,
                )
                self.db.add(insight)
        except IntegrityError:
            insight = self.db.query(Insight).filter(*filters).one()
            insight.value = value
        return insight

    def enqueue_all_active(self) -> List[int]:
        """Daily fan-out: one insights task per active Facebook/Instagram channel"""
        channel_ids = [
            row.id for row in self.db.query(Channel.id).filter(
                Channel.status == ChannelStatus.ACTIVE,
                Channel.type.in_(INSIGHT_CHANNEL_TYPES),
            ).all()
        ]
        for channel_id in channel_ids:
            _enqueue_insights(channel_id)
        logger.info(f"Queued insights fetch for {len(channel_ids)} channels")
        return channel_ids
