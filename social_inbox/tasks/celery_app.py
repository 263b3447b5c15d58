from celery import Celery
from celery.signals import worker_process_init

from social_inbox.core.config import get_settings
from social_inbox.core.logging import setup_worker_logging

settings = get_settings()

celery_app = Celery(
    "social_inbox",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=[
        "social_inbox.tasks.ingestion_tasks",  # Webhook payload processing
        "social_inbox.tasks.sync_tasks",  # Scheduled and manual platform sync
        "social_inbox.tasks.enrichment_tasks",  # AI enrichment and routing
        "social_inbox.tasks.notification_tasks",  # Email delivery
        "social_inbox.tasks.dead_letter_tasks",  # DLQ watchdog
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
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes

    worker_concurrency=settings.celery_worker_concurrency,
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=100,

    # Acknowledge only after completion so a lost worker redelivers
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_transport_options={
        'visibility_timeout': 3600,  # 1 hour visibility timeout
    },

    task_routes={
        'social_inbox.tasks.ingestion_tasks.*': {'queue': 'ingestion'},
        'social_inbox.tasks.sync_tasks.*': {'queue': 'sync'},
        'social_inbox.tasks.enrichment_tasks.*': {'queue': 'enrichment'},
        'social_inbox.tasks.notification_tasks.*': {'queue': 'notification'},
        'social_inbox.tasks.dead_letter_tasks.*': {'queue': 'default'},
    },

    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',
    task_create_missing_queues=True,
)

celery_app.conf.task_queues = {
    'default': {
        'exchange': 'default',
        'routing_key': 'default',
        'durable': True,
        'auto_delete': False,
    },
    'ingestion': {
        'exchange': 'ingestion',
        'routing_key': 'ingestion',
        'durable': True,
        'auto_delete': False,
    },
    'sync': {
        'exchange': 'sync',
        'routing_key': 'sync',
        'durable': True,
        'auto_delete': False,
    },
    'enrichment': {
        'exchange': 'enrichment',
        'routing_key': 'enrichment',
        'durable': True,
        'auto_delete': False,
    },
    'notification': {
        'exchange': 'notification',
        'routing_key': 'notification',
        'durable': True,
        'auto_delete': False,
    },
}

celery_app.conf.beat_schedule = {
    # Pull new interactions from connections with auto_sync enabled
    'sync-all-connections': {
        'task': 'social_inbox.tasks.sync_tasks.sync_all_connections',
        'schedule': 60.0 * settings.sync_interval_minutes,
        'options': {'queue': 'sync', 'expires': 60.0 * settings.sync_interval_minutes},
    },

    # DLQ watchdog scan - every hour
    'dead-letter-scan': {
        'task': 'social_inbox.tasks.dead_letter_tasks.scan_dead_letters',
        'schedule': 60.0 * 60.0,
        'options': {'queue': 'default', 'expires': 1800},  # 30 min expiry
    },
}


@worker_process_init.connect
def _configure_worker_logging(**kwargs):
    setup_worker_logging()
