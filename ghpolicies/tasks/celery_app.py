"""Celery app and tasks for scans, remediation and pull request webhooks."""

from celery import Celery
from celery.schedules import crontab

from ghpolicies.core.config import settings

celery_app = Celery(
    "ghpolicies",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_soft_time_limit=1800,  # 30 min soft limit, surfaces inside the scan
    task_time_limit=2100,  # 35 min hard limit
)


def _scan_schedule() -> crontab:
    minute, hour, day_of_month, month_of_year, day_of_week = settings.SCAN_CRON.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


celery_app.conf.beat_schedule = {
    "daily-scan": {"task": "perform_scan", "schedule": _scan_schedule()},
}


@celery_app.task(bind=True, name="perform_scan")
def perform_scan(self) -> dict:
    """Run one scan; remediation is queued as its own task."""
    from ghpolicies.db.session import SessionLocal
    from ghpolicies.core.dependencies import build_scan_executor
    from ghpolicies.services.cache_service import cache_service

    db = SessionLocal()
    try:
        executor = build_scan_executor(db, enqueue_remediation=process_actions_for_scan.delay)
        result = executor.execute()
        cache_service.publish_scan_event(result["scan_id"], result)
        return result
    finally:
        db.close()


@celery_app.task(bind=True, name="process_actions_for_scan", acks_late=True)
def process_actions_for_scan(self, scan_id: int) -> dict:
    """Remediate the violations of a completed scan. Safe to run more than once."""
    from ghpolicies.db.session import SessionLocal
    from ghpolicies.core.dependencies import build_action_service
    from ghpolicies.services.cache_service import cache_service

    db = SessionLocal()
    try:
        summary = build_action_service(db).process_actions_for_scan(scan_id)
        cache_service.publish_scan_event(scan_id, {"scan_id": scan_id, "remediation": summary})
        return summary
    finally:
        db.close()


@celery_app.task(bind=True, name="process_pull_request_event", acks_late=True)
def process_pull_request_event(self, action: str, payload: dict, delivery_id=None) -> dict:
    """Comment on or block one pull request after a webhook delivery."""
    from ghpolicies.db.session import SessionLocal
    from ghpolicies.core.dependencies import build_pull_request_handler

    db = SessionLocal()
    try:
        return build_pull_request_handler(db).handle(action, payload, delivery_id)
    finally:
        db.close()
