"""
Streakr Background Scheduler Service

Runs the automatic pick lock sync for the current round on an interval
using APScheduler. Settlement itself is always admin-driven; this only
moves open questions to pending once the live score feed says the round
is underway.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from streakr import db
from streakr.models import Round
from streakr.services.lock_service import auto_sync_locks

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages the background lock sync job"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.sync_stats = {
            "last_sync": None,
            "total_syncs": 0,
            "successful_syncs": 0,
            "failed_syncs": 0,
            "last_error": None,
            "questions_locked": 0,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        # Register shutdown
        atexit.register(self.shutdown)

        # Start scheduler if enabled
        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
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

    def _add_core_jobs(self):
        interval = self.app.config.get("LOCK_SYNC_INTERVAL_SECONDS", 120)
        self.scheduler.add_job(
            func=self._sync_current_round_locks,
            trigger=IntervalTrigger(seconds=interval),
            id="sync_round_locks",
            name="Auto-lock Current Round",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(30, interval // 2),
        )

    def _sync_current_round_locks(self):
        """Lock the current round's open questions once a game has started"""
        with self.app.app_context():
            try:
                season = self.app.config["CURRENT_SEASON"]
                current_round = Round.get_current(season)
                if current_round is None:
                    return

                result = auto_sync_locks(season, current_round.round_number)
                self._update_stats(True, result.get("locked", 0))

                if result.get("locked"):
                    logger.info(
                        f"Lock sync: {result['locked']} question(s) locked in "
                        f"{current_round.code}"
                    )

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error in lock sync: {e}", exc_info=True)

    def _update_stats(self, success, questions_locked=0):
        """Update sync statistics"""
        self.sync_stats["last_sync"] = datetime.now(timezone.utc)
        self.sync_stats["total_syncs"] += 1

        if success:
            self.sync_stats["successful_syncs"] += 1
            self.sync_stats["questions_locked"] += questions_locked
            self.sync_stats["last_error"] = None
        else:
            self.sync_stats["failed_syncs"] += 1

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.sync_stats)
        if stats["last_sync"]:
            stats["last_sync"] = stats["last_sync"].isoformat()
        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_sync(self):
        """Manually trigger a lock sync"""
        if self.app is None:
            return False, "Scheduler not initialised"
        self._sync_current_round_locks()
        if self.sync_stats["last_error"]:
            return False, f"Manual sync failed: {self.sync_stats['last_error']}"
        return True, "Manual lock sync completed"


# Global scheduler instance
scheduler_service = SchedulerService()
