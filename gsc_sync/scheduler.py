"""
Scheduler for automated campaign syncs

Uses APScheduler to run the Search Console sync for every active campaign.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from typing import Optional
import pytz

from gsc_sync.config import get_settings
from gsc_sync.services.campaign_sync_service import CampaignSyncService
from gsc_sync.services.export_service import ExportService
from gsc_sync.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()

_sync_service: Optional[CampaignSyncService] = None


def get_sync_service() -> CampaignSyncService:
    """Shared sync service (lazy so importing the scheduler touches no database)"""
    global _sync_service
    if _sync_service is None:
        exporter = ExportService() if settings.export_enabled else None
        _sync_service = CampaignSyncService(exporter=exporter)
    return _sync_service


# Sync Functions

async def sync_all_campaigns():
    """Sync every active campaign (daily)"""
    try:
        log.info("Starting scheduled campaign sync...")
        result = await get_sync_service().sync_all_campaigns()
        log.info(
            f"Scheduled campaign sync finished: {result['succeeded']}/{result['total_campaigns']} "
            f"campaigns succeeded in {result['duration_seconds']}s"
        )
    except Exception as e:
        log.error(f"Scheduled campaign sync error: {str(e)}")


# Schedule Configuration

def setup_scheduler():
    """
    Configure the scheduler.

    Search Console data lags ~3 days, so one run per day is enough; each run
    fetches only scopes that are not already complete.
    """
    scheduler.add_job(
        sync_all_campaigns,
        trigger=CronTrigger.from_crontab(settings.sync_daily_schedule, timezone=pytz.timezone(settings.sync_timezone)),
        id='campaign_sync',
        name='Search Console Campaign Sync',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started with jobs:")
    for job in scheduler.get_jobs():
        log.info(f"  - {job.name} (ID: {job.id})")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    """
    Get list of scheduled jobs

    Returns:
        List of job info dictionaries
    """
    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
