"""
Celery application configuration.

This module sets up Celery for background imports with Redis as the
message broker and result backend.
"""

from celery import Celery
from kombu import Exchange, Queue

from backend.config import settings

# Create Celery application
celery_app = Celery(
    'roster_import',
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=['tasks.import_tasks']
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=3600,  # 1 hour hard timeout
    task_soft_time_limit=3300,
    worker_prefetch_multiplier=1,  # Imports clear and reload shared tables; one at a time

    # Results
    result_expires=settings.PROGRESS_CACHE_EXPIRY,
    result_extended=True,

    # Task routing
    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',

    # Worker configuration
    worker_max_tasks_per_child=100,

    # Task acknowledgement
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)

# Define task queues
celery_app.conf.task_queues = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('import', Exchange('import'), routing_key='import.#'),
)

# Task routes
celery_app.conf.task_routes = {
    'tasks.import_tasks.import_workbook_file': {'queue': 'import', 'routing_key': 'import.workbook'},
    'tasks.import_tasks.import_json_file': {'queue': 'import', 'routing_key': 'import.json'},
}


if __name__ == '__main__':
    celery_app.start()
