"""
GridGuessr Lock Sweep Scheduler Service

Runs an APScheduler background job that moves races and bonus events along
their lifecycle as their lock (and open) times pass, so submissions are
refused after lock even when no administrator touches the event.
"""

import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from gridguessr import db
from gridguessr.models import BonusEvent, Race
from gridguessr.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)


def lock_due_events(now=None):
    """
    Lock races past their lock time and re-derive bonus event statuses.

    Returns a dict with the number of races and bonus events changed. The
    caller owns the transaction.
    """
    now = now or get_utc_time()
    races_locked = 0
    bonus_updated = 0

    for race in Race.query.filter(Race.status.in_(["upcoming", "open"])).all():
        if race.is_locked(now):
            logger.info(f"Locking race {race.id} ({race.name}), lock time passed")
            race.status = "locked"
            races_locked += 1

    for event in BonusEvent.query.filter(BonusEvent.status.in_(["scheduled", "open"])).all():
        status = event.derive_status(now)
        if status != event.status:
            logger.info(f"Bonus event {event.id} status {event.status} -> {status}")
            event.status = status
            bonus_updated += 1

    return {"races_locked": races_locked, "bonus_events_updated": bonus_updated}


class SchedulerService:
    """Manages the background lock sweep"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.sweep_stats = {
            "last_sweep": None,
            "total_sweeps": 0,
            "failed_sweeps": 0,
            "last_error": None,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self.scheduler.add_job(
                func=self._sweep,
                trigger=IntervalTrigger(
                    seconds=self.app.config.get("LOCK_SWEEP_INTERVAL_SECONDS", 60)
                ),
                id="lock_sweep",
                name="Lock Races And Bonus Events",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=30,
            )
            self.scheduler.start()
            self.is_running = True
            logger.info("Scheduler started successfully")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _sweep(self):
        with self.app.app_context():
            try:
                changes = lock_due_events()
                db.session.commit()
                self.sweep_stats["last_sweep"] = get_utc_time().isoformat()
                self.sweep_stats["total_sweeps"] += 1
                if any(changes.values()):
                    logger.info(f"Lock sweep: {changes}")
            except SQLAlchemyError as e:
                db.session.rollback()
                self.sweep_stats["failed_sweeps"] += 1
                self.sweep_stats["last_error"] = str(e)
                logger.error(f"Error in lock sweep: {e}", exc_info=True)

    def get_status(self):
        jobs = []
        if self.scheduler and self.is_running:
            for job in self.scheduler.get_jobs():
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    }
                )
        return {"running": self.is_running, "jobs": jobs, "stats": self.sweep_stats}


scheduler_service = SchedulerService()
