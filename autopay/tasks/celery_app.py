from celery import Celery
from celery.schedules import crontab

from autopay.app.config import settings

# Create Celery instance and include explicit task modules
celery_app = Celery(
    'autopay',
    include=[
        'autopay.tasks.workers.charge_worker',
    ]
)

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.CHARGE_SCHEDULE_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes hard limit
)

# Daily charge tick at the configured local time, sweeps right after.
celery_app.conf.beat_schedule = {
    'charge-due-mandates': {
        'task': 'tasks.run_charge_tick',
        'schedule': crontab(hour=settings.CHARGE_SCHEDULE_HOUR, minute=settings.CHARGE_SCHEDULE_MINUTE),
    },
    'daily-subscription-sweeps': {
        'task': 'tasks.run_daily_sweeps',
        'schedule': crontab(hour=settings.CHARGE_SCHEDULE_HOUR, minute=(settings.CHARGE_SCHEDULE_MINUTE + 30) % 60),
    },
    'retry-reconciliations': {
        'task': 'tasks.retry_reconciliations',
        'schedule': crontab(minute=15),
    },
}
