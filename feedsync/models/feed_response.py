from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class FeedResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    url: Optional[str] = None
    type: str
    color: Optional[str] = None
    enabled: Optional[bool] = True
    recurrence_strategy: str
    last_sync: Optional[datetime] = None
    error: Optional[str] = None
    account_id: Optional[str] = None
    user_id: str
