"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

from core.config import settings

# Schedule configuration
beat_schedule = {
    # Pending-job sweep: recommendation, week-generation and scan-extraction jobs.
    'process-pending-jobs': {
        'task': 'jobs.process_pending_jobs',
        'schedule': crontab(minute=f'*/{settings.JOB_SWEEP_INTERVAL_MINUTES}'),
    },
}
