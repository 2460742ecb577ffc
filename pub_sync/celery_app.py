import os

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

load_dotenv()

app = Celery(
    "pub_sync",
    broker=os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/0"),
    include=["pub_sync.tasks"],
)

app.conf.update(
    timezone=os.getenv("CELERY_TIMEZONE", "UTC"),
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# trackers are per-process, so one worker owns every job
app.conf.task_routes = {
    "pub_sync.tasks.*": {"queue": "pub_sync"},
}

app.conf.beat_schedule = {
    "pubmed-incremental-sync-daily": {
        "task": "pub_sync.tasks.sync_publications",
        "schedule": crontab(minute=15, hour=2),
        "args": ["incremental"],
    },
    "citation-refresh-weekly": {
        "task": "pub_sync.tasks.refresh_citation_counts",
        "schedule": crontab(minute=0, hour=4, day_of_week="sun"),
        "args": [],
    },
    "abstract-refresh-weekly": {
        "task": "pub_sync.tasks.refresh_missing_abstracts",
        "schedule": crontab(minute=30, hour=4, day_of_week="sun"),
        "args": [],
    },
    "citation-source-ranking-monthly": {
        "task": "pub_sync.tasks.rank_citation_sources",
        "schedule": crontab(minute=30, hour=3, day_of_month="1"),
        "args": [],
    },
}
