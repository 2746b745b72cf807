from typing import List
from pydantic import BaseModel


class SyncStatus(BaseModel):
    """Model for tracking sync status and results"""
    events_synced: int = 0
    masters_synced: int = 0
    events_deleted: int = 0
    skipped_events: int = 0
    failed_masters: List[str] = []
