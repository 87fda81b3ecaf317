# jobs.py
"""
Scheduled sweeps. Each job is one bounded pass: scan, act, return.
APScheduler's max_instances=1 keeps passes of the same job from overlapping.
"""
import logging
import os

import click
from apscheduler.schedulers.background import BackgroundScheduler

from loans.actions import notify_default, send_grace_period_warning
from loans.default_detection import get_defaulted_loans
from loans.grace_period import get_loans_in_grace_period
from notifications.formatting import NotificationType
from notifications.utils import was_delivered
from services import get_services

logger = logging.getLogger(__name__)


def sweep_defaults():
    """Notify each defaulted loan once. Marking on-chain stays an operator action."""
    svc = get_services()
    result = get_defaulted_loans(svc.ledger)
    sent = 0
    for loan in result.items:
        if was_delivered(loan.loan_id, NotificationType.LOAN_DEFAULT.value):
            continue
        notify_default(svc.ledger, svc.dispatcher, loan)
        sent += 1
    logger.info("Default sweep: %s defaulted, %s newly notified, %s failures", result.count, sent, len(result.failures))
    return sent


def sweep_grace_period():
    svc = get_services()
    result = get_loans_in_grace_period(svc.ledger)
    for check in result.items:
        send_grace_period_warning(svc.dispatcher, check)
    logger.info("Grace-period sweep: %s warned, %s failures", result.count, len(result.failures))
    return result.count


def poll_events():
    svc = get_services()
    result = svc.event_processor().poll(svc.config.get("EVENT_LOOKBACK_BLOCKS", 1000))
    return len(result.outcomes)


JOBS = (
    ("default_sweep", sweep_defaults, "DEFAULT_SCAN_MINUTES"),
    ("grace_period_sweep", sweep_grace_period, "DEFAULT_SCAN_MINUTES"),
    ("event_poll", poll_events, "EVENT_POLL_MINUTES"),
)


def _with_app(app, job):
    def run():
        with app.app_context():
            try:
                job()
            except Exception:
                logger.exception("Scheduled job %s failed", job.__name__)
    run.__name__ = job.__name__
    return run


def start_scheduler(app):
    """Start the background sweeps; returns the scheduler or None when disabled."""
    if not app.config.get("SCHEDULER_ENABLED"):
        return None
    # flask CLI commands other than "run" (db migrate, shell, ...) must not schedule
    ctx = click.get_current_context(silent=True)
    if ctx is not None and ctx.info_name != "run":
        return None
    # nor the reloader parent process
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        return None

    scheduler = BackgroundScheduler()
    for job_id, job, minutes_key in JOBS:
        scheduler.add_job(
            _with_app(app, job),
            "interval",
            minutes=int(app.config.get(minutes_key, 60)),
            id=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            misfire_grace_time=60,
        )
    scheduler.start()
    logger.info("Background scheduler started with jobs: %s", ", ".join(j[0] for j in JOBS))
    return scheduler
