from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class AddFeedRequest(BaseModel):
    """Body of a request attaching a Google calendar as a feed"""
    model_config = ConfigDict(populate_by_name=True)

    account_id: Optional[str] = Field(default=None, alias='accountId')
    calendar_id: Optional[str] = Field(default=None, alias='calendarId')
    name: Optional[str] = None
    color: Optional[str] = None


class ResyncFeedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    feed_id: Optional[str] = Field(default=None, alias='feedId')
