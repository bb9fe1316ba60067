from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from socialhub.core.config import get_settings
from socialhub.core.logging import setup_logging

settings = get_settings()

celery_app = Celery(
    "socialhub",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=[
        "socialhub.tasks.webhook_tasks",
        "socialhub.tasks.messaging_tasks",
        "socialhub.tasks.posting_tasks",
        "socialhub.tasks.token_tasks",
        "socialhub.tasks.insights_tasks",
        "socialhub.tasks.scheduled_job_tasks",
        "socialhub.tasks.maintenance_tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=1800,  # 30 minutes
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    # Acknowledge only after the task body has run
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_transport_options={
        'visibility_timeout': 3600,
        'priority_steps': list(range(10)),
    },

    task_routes={
        'socialhub.tasks.webhook_tasks.*': {'queue': 'webhooks', 'priority': 9},
        'socialhub.tasks.messaging_tasks.*': {'queue': 'messaging', 'priority': 8},
        'socialhub.tasks.posting_tasks.*': {'queue': 'posting', 'priority': 8},
        'socialhub.tasks.token_tasks.*': {'queue': 'token_health', 'priority': 7},
        'socialhub.tasks.scheduled_job_tasks.*': {'queue': 'scheduler', 'priority': 7},
        'socialhub.tasks.insights_tasks.*': {'queue': 'insights', 'priority': 5},
        'socialhub.tasks.maintenance_tasks.*': {'queue': 'maintenance', 'priority': 3},
    },

    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',
    task_create_missing_queues=True,
)

QUEUE_NAMES = (
    'default',
    'webhooks',
    'messaging',
    'posting',
    'token_health',
    'scheduler',
    'insights',
    'maintenance',
)

celery_app.conf.task_queues = {
    name: {
        'exchange': name,
        'routing_key': name,
        'durable': True,
        'auto_delete': False,
    }
    for name in QUEUE_NAMES
}

celery_app.conf.beat_schedule = {
    # Due ScheduledJob rows (post publishing, insight fetches)
    'process-scheduled-jobs': {
        'task': 'socialhub.tasks.scheduled_job_tasks.process_scheduled_jobs',
        'schedule': 60.0,  # Every minute
        'options': {'queue': 'scheduler'},
    },

    'refresh-expiring-tokens': {
        'task': 'socialhub.tasks.token_tasks.refresh_expiring_tokens',
        'schedule': 60.0 * 60.0 * 24,  # Daily
        'options': {'queue': 'token_health'},
    },

    'enqueue-daily-insights': {
        'task': 'socialhub.tasks.insights_tasks.enqueue_daily_insights',
        'schedule': 60.0 * 60.0 * 24,  # Daily
        'options': {'queue': 'insights'},
    },

    'purge-processed-webhook-events': {
        'task': 'socialhub.tasks.maintenance_tasks.purge_processed_webhook_events',
        'schedule': 60.0 * 60.0 * 24,  # Daily
        'options': {'queue': 'maintenance'},
    },
}


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Workers log through the same formatter setup as the API"""
    setup_logging(service_name='socialhub-worker')
