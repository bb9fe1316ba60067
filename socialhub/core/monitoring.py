"""
Prometheus metrics for the webhook ingestion and dispatch pipeline
"""
import logging

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """Prometheus metrics collector for the pipeline"""

    def __init__(self):
        self.registry = CollectorRegistry()

        # Webhook ingestion
        self.webhook_events_received_total = Counter(
            'webhook_events_received_total',
            'Inbound webhook requests by outcome',
            ['provider', 'outcome'],
            registry=self.registry
        )

        self.webhook_events_processed_total = Counter(
            'webhook_events_processed_total',
            'Webhook events reaching a terminal status',
            ['provider', 'status'],
            registry=self.registry
        )

        # Platform APIs
        self.platform_api_calls_total = Counter(
            'platform_api_calls_total',
            'Total social platform API calls',
            ['platform', 'action', 'status'],
            registry=self.registry
        )

        self.platform_api_duration_seconds = Histogram(
            'platform_api_duration_seconds',
            'Social platform API call duration in seconds',
            ['platform', 'action'],
            registry=self.registry
        )

        # Tasks
        self.task_retries_total = Counter(
            'task_retries_total',
            'Celery task retries scheduled',
            ['task'],
            registry=self.registry
        )

        self.social_posts_total = Counter(
            'social_posts_total',
            'Post publish outcomes',
            ['platform', 'status'],
            registry=self.registry
        )

    def record_webhook_received(self, provider: str, outcome: str):
        self.webhook_events_received_total.labels(provider=provider, outcome=outcome).inc()

    def record_webhook_processed(self, provider: str, status: str):
        self.webhook_events_processed_total.labels(provider=provider, status=status).inc()

    def record_platform_call(self, platform: str, action: str, status: str, duration_seconds: float):
        self.platform_api_calls_total.labels(platform=platform, action=action, status=status).inc()
        self.platform_api_duration_seconds.labels(platform=platform, action=action).observe(duration_seconds)

    def record_task_retry(self, task: str):
        self.task_retries_total.labels(task=task).inc()

    def record_post_outcome(self, platform: str, status: str):
        self.social_posts_total.labels(platform=platform, status=status).inc()

    def export(self):
        """Render the registry in Prometheus text format"""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


# Global metrics instance
metrics = PrometheusMetrics()
