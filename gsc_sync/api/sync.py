"""
Campaign synchronization endpoints
"""
from fastapi import APIRouter, BackgroundTasks, HTTPException, Query
from typing import List, Optional
from datetime import datetime
from sqlalchemy import select
from gsc_sync.models.sync_state import SyncRunLog
from gsc_sync.services.campaign_sync_service import FLOWS, CampaignSyncService
from gsc_sync.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])

# In-memory sync status for background tasks
_sync_status = {}


def _update_sync_status(key: str, status: str, result=None, error=None):
    _sync_status[key] = {
        "status": status,
        "started_at": _sync_status.get(key, {}).get("started_at", datetime.utcnow().isoformat()),
        "updated_at": datetime.utcnow().isoformat(),
        "result": result,
        "error": error,
    }


def _get_sync_service() -> CampaignSyncService:
    from gsc_sync.scheduler import get_sync_service
    return get_sync_service()


async def _run_campaign(campaign_id: int, flows: Optional[List[str]]):
    """Background task: sync one campaign."""
    key = f"campaign:{campaign_id}"
    _update_sync_status(key, "running")
    try:
        report = await _get_sync_service().run_campaign(campaign_id, flows=flows)
        _update_sync_status(key, "completed" if report.success else "failed", result=report.to_dict())
    except Exception as e:
        log.error(f"Background sync for campaign {campaign_id} error: {str(e)}")
        _update_sync_status(key, "failed", error=str(e))


async def _run_all():
    """Background task: sync all active campaigns."""
    _update_sync_status("all", "running")
    try:
        result = await _get_sync_service().sync_all_campaigns()
        _update_sync_status("all", "completed", result=result)
    except Exception as e:
        log.error(f"Background sync_all error: {str(e)}")
        _update_sync_status("all", "failed", error=str(e))


@router.post("/campaigns/{campaign_id}")
async def sync_campaign(
    campaign_id: int,
    background_tasks: BackgroundTasks,
    flows: Optional[List[str]] = Query(None, description=f"Subset of {list(FLOWS)}"),
):
    """
    Sync one campaign (runs in background).
    Check progress at GET /sync/progress
    """
    if flows:
        unknown = [flow for flow in flows if flow not in FLOWS]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown flows: {unknown}. Valid: {list(FLOWS)}")

    _update_sync_status(f"campaign:{campaign_id}", "started")
    background_tasks.add_task(_run_campaign, campaign_id, flows)
    return {
        "message": "Sync started in background",
        "campaign_id": campaign_id,
        "flows": flows or list(FLOWS),
        "check_progress": "/sync/progress",
    }


@router.post("/all")
async def sync_all_campaigns(background_tasks: BackgroundTasks):
    """Sync every active campaign (runs in background)."""
    _update_sync_status("all", "started")
    background_tasks.add_task(_run_all)
    return {"message": "Sync started in background", "check_progress": "/sync/progress"}


@router.get("/progress")
async def sync_progress():
    """Status of background syncs started through this API"""
    return _sync_status


@router.get("/campaigns/{campaign_id}/status")
def campaign_sync_status(campaign_id: int, limit: int = Query(20, ge=1, le=200)):
    """Recent flow runs and completed checkpoints for a campaign"""
    service = _get_sync_service()

    db = service.session_factory()
    try:
        runs = db.execute(
            select(SyncRunLog)
            .where(SyncRunLog.campaign_id == campaign_id)
            .order_by(SyncRunLog.id.desc())
            .limit(limit)
        ).scalars().all()
        run_data = [
            {
                "flow": run.flow,
                "status": run.status,
                "windows_processed": run.windows_processed,
                "windows_skipped": run.windows_skipped,
                "windows_failed": run.windows_failed,
                "records_upserted": run.records_upserted,
                "records_failed": run.records_failed,
                "error_message": run.error_message,
                "started_at": run.started_at.isoformat() if run.started_at else None,
                "duration_seconds": run.duration_seconds,
            }
            for run in runs
        ]
    finally:
        db.close()

    checkpoints = [
        {
            "flow": checkpoint.flow,
            "scope": checkpoint.scope,
            "status": checkpoint.status,
            "completed_at": checkpoint.completed_at.isoformat() if checkpoint.completed_at else None,
        }
        for checkpoint in service.checker.checkpoints(campaign_id)
    ]

    return {"campaign_id": campaign_id, "runs": run_data, "checkpoints": checkpoints}


@router.get("/jobs")
async def scheduled_jobs():
    """Scheduled sync jobs"""
    from gsc_sync.scheduler import get_scheduled_jobs
    return {"jobs": get_scheduled_jobs()}
