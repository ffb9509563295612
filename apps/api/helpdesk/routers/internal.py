"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when the worker's own sweep is not running.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from helpdesk.core.deps import get_db, verify_internal_secret
from helpdesk.services import channel_sync_service

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


class ChannelSyncResponse(BaseModel):
    jobs_created: int


@router.post("/channel-sync", response_model=ChannelSyncResponse)
def schedule_channel_sync(db: Session = Depends(get_db)):
    """Enqueue a sync job for every email channel whose interval has elapsed."""
    return ChannelSyncResponse(
        jobs_created=channel_sync_service.schedule_due_channel_syncs(db)
    )
