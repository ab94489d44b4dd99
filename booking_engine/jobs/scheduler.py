"""
Background job scheduler using APScheduler.

Jobs registered by the API process:
- notification delivery (every 30 seconds)
- appointment reminder sweep (every 5 minutes)
- expired notification purge (daily at 03:00 UTC)

Usage:
    scheduler = get_scheduler()
    register_engine_jobs(scheduler, dispatcher, reminders)
    scheduler.start()
"""
import logging
from typing import Callable, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from booking_engine.lib.settings import settings
from booking_engine.services.notification_service import NotificationDispatcher
from booking_engine.services.reminders import ReminderService

logger = logging.getLogger(__name__)


DELIVERY_JOB_ID = "notification_delivery"
REMINDER_JOB_ID = "appointment_reminders"
PURGE_JOB_ID = "notification_purge"

# Singleton scheduler instance
_scheduler: Optional["SchedulerManager"] = None


def deliver_notifications(dispatcher: NotificationDispatcher) -> Dict[str, int]:
    return dispatcher.deliver_pending()


def send_reminders(reminders: ReminderService) -> Dict[str, int]:
    return reminders.sweep()


def purge_notifications(dispatcher: NotificationDispatcher) -> int:
    return dispatcher.purge_expired()


class SchedulerManager:
    """
    Manager for APScheduler with lifecycle management.
    """

    def __init__(self):
        self.scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance per job
                'misfire_grace_time': 300,  # 5 minutes grace period
            }
        )

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

        logger.info("SchedulerManager initialized")

    def _on_job_executed(self, event):
        logger.info(f"Job {event.job_id} executed successfully (result: {event.retval})")

    def _on_job_error(self, event):
        logger.error(
            f"Job {event.job_id} raised {event.exception.__class__.__name__}: "
            f"{event.exception}",
            exc_info=event.exception
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start the scheduler."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")
        else:
            logger.warning("Scheduler already running")

    def shutdown(self, wait: bool = True) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to finish
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown")
        else:
            logger.warning("Scheduler not running")

    def add_cron_job(
        self,
        func: Callable,
        job_id: str,
        hour: Optional[int] = None,
        minute: Optional[int] = None,
        day_of_week: Optional[str] = None,
        **kwargs
    ) -> None:
        """
        Add a cron-scheduled job.

        Args:
            func: Job function
            job_id: Unique job identifier
            hour: Hour to run (0-23)
            minute: Minute to run (0-59)
            day_of_week: Day of week (mon,tue,wed,thu,fri,sat,sun)
            **kwargs: Additional APScheduler job options
        """
        trigger = CronTrigger(
            hour=hour,
            minute=minute,
            day_of_week=day_of_week,
            timezone="UTC"
        )

        self.scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)

        logger.info(f"Added cron job: {job_id} (hour={hour}, minute={minute})")

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        seconds: Optional[int] = None,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        **kwargs
    ) -> None:
        """
        Add an interval-scheduled job.

        Args:
            func: Job function
            job_id: Unique job identifier
            seconds: Interval in seconds
            minutes: Interval in minutes
            hours: Interval in hours
            **kwargs: Additional APScheduler job options
        """
        if not any([seconds, minutes, hours]):
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        trigger = IntervalTrigger(
            seconds=seconds or 0,
            minutes=minutes or 0,
            hours=hours or 0,
            timezone="UTC"
        )

        self.scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)

        logger.info(
            f"Added interval job: {job_id} "
            f"(seconds={seconds}, minutes={minutes}, hours={hours})"
        )

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
        logger.info(f"Removed job: {job_id}")

    def get_jobs(self) -> list:
        """Get list of scheduled jobs."""
        return self.scheduler.get_jobs()


def register_engine_jobs(
    manager: SchedulerManager,
    dispatcher: NotificationDispatcher,
    reminders: Optional[ReminderService] = None,
) -> None:
    """Register the delivery, reminder and purge jobs on the manager."""
    manager.add_interval_job(deliver_notifications, DELIVERY_JOB_ID, seconds=30, args=[dispatcher])
    if reminders is not None and settings.reminders_enabled:
        manager.add_interval_job(send_reminders, REMINDER_JOB_ID, minutes=5, args=[reminders])
    manager.add_cron_job(purge_notifications, PURGE_JOB_ID, hour=3, minute=0, args=[dispatcher])


def get_scheduler() -> SchedulerManager:
    """
    Get singleton scheduler instance.

    Returns:
        SchedulerManager instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = SchedulerManager()

    return _scheduler
