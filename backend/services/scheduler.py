"""
Scheduled tasks for notification delivery
Sends admin-scheduled notifications once their send time has passed
"""
import logging
from datetime import datetime, timezone
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import SCHEDULED_NOTIFICATION_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def deliver_scheduled_notifications():
    """Send every scheduled notification that is due"""
    from database import db
    from services.notification_dispatcher import send_due_notifications

    try:
        sent = await send_due_notifications(db)
    except Exception as e:
        logger.error(f"[Scheduler] Scheduled notification run failed: {e}")
        return 0

    if sent:
        await db.scheduled_job_logs.insert_one({
            "job": "scheduled_notifications",
            "triggered_at": datetime.now(timezone.utc).isoformat(),
            "sent": sent
        })
    return sent


def start_scheduler():
    """Start the APScheduler with the scheduled-notification job"""
    scheduler.add_job(
        deliver_scheduled_notifications,
        IntervalTrigger(seconds=SCHEDULED_NOTIFICATION_INTERVAL_SECONDS),
        id="scheduled_notifications",
        name=f"Scheduled notifications (every {SCHEDULED_NOTIFICATION_INTERVAL_SECONDS}s)",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - scheduled notifications checked every {SCHEDULED_NOTIFICATION_INTERVAL_SECONDS}s")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


def get_scheduler_status():
    """Get status of scheduled jobs"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })
    return {
        "running": scheduler.running,
        "jobs": jobs
    }
