"""
Unit tests for Celery configuration
Validates beat schedule entries, queue routing and task registration
"""
from social_inbox.core.config import get_settings
from social_inbox.tasks.celery_app import celery_app

PIPELINE_QUEUES = ('default', 'ingestion', 'sync', 'enrichment', 'notification')


class TestCeleryBeatSchedule:
    """Test Celery Beat schedule configuration"""

    def test_sync_all_connections_schedule(self):
        schedule = celery_app.conf.beat_schedule.get('sync-all-connections')

        assert schedule is not None, "sync-all-connections schedule missing"
        assert schedule['task'] == 'social_inbox.tasks.sync_tasks.sync_all_connections'
        assert schedule['schedule'] == 60.0 * get_settings().sync_interval_minutes
        assert schedule['options']['queue'] == 'sync'

    def test_dead_letter_scan_schedule(self):
        schedule = celery_app.conf.beat_schedule.get('dead-letter-scan')

        assert schedule is not None, "dead-letter-scan schedule missing"
        assert schedule['task'] == 'social_inbox.tasks.dead_letter_tasks.scan_dead_letters'
        assert schedule['schedule'] == 60.0 * 60.0  # Hourly
        assert schedule['options']['queue'] == 'default'

    def test_all_scheduled_tasks_have_required_fields(self):
        """Verify all scheduled tasks name a task, a positive interval and a queue"""
        for task_name, schedule_config in celery_app.conf.beat_schedule.items():
            assert schedule_config['task'].strip(), f"Task '{task_name}' has empty task name"
            assert schedule_config['schedule'] > 0, f"Task '{task_name}' schedule must be positive"
            assert schedule_config['options']['queue'] in PIPELINE_QUEUES


class TestCeleryQueues:

    def test_queues_are_durable(self):
        for queue in PIPELINE_QUEUES:
            assert celery_app.conf.task_queues[queue]['durable'] is True

    def test_task_routes(self):
        routes = celery_app.conf.task_routes
        assert routes['social_inbox.tasks.ingestion_tasks.*']['queue'] == 'ingestion'
        assert routes['social_inbox.tasks.sync_tasks.*']['queue'] == 'sync'
        assert routes['social_inbox.tasks.enrichment_tasks.*']['queue'] == 'enrichment'
        assert routes['social_inbox.tasks.notification_tasks.*']['queue'] == 'notification'

    def test_tasks_registered(self):
        """Scheduled and pipeline tasks must be importable by name"""
        celery_app.loader.import_default_modules()
        expected = [
            'social_inbox.tasks.ingestion_tasks.process_webhook_event',
            'social_inbox.tasks.sync_tasks.sync_platform_connection',
            'social_inbox.tasks.sync_tasks.sync_all_connections',
            'social_inbox.tasks.enrichment_tasks.enrich_interaction',
            'social_inbox.tasks.notification_tasks.deliver_notification',
            'social_inbox.tasks.dead_letter_tasks.scan_dead_letters',
        ]
        for name in expected:
            assert name in celery_app.tasks, f"{name} not registered"

    def test_late_acknowledgement(self):
        assert celery_app.conf.task_acks_late is True
        assert celery_app.conf.task_reject_on_worker_lost is True
