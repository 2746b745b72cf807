from .feed_response import FeedResponse
from .requests import AddFeedRequest, ResyncFeedRequest
from .sync_status import SyncStatus

__all__ = ['AddFeedRequest', 'FeedResponse', 'ResyncFeedRequest', 'SyncStatus']
