from datetime import datetime
from zoneinfo import ZoneInfo
from typing import Callable, Dict, Any, Optional, Tuple
from googleapiclient.errors import HttpError
import logging
import uuid

from ..database.connection import DatabaseManager
from ..database.models import CalendarEvent, CalendarFeed, ConnectedAccount
from ..errors import (
    FeedSyncError, NotFoundError, RemoteAccessError, RemoteAuthError, ValidationError
)
from ..integrations.google_calendar import GoogleCalendarClient
from ..integrations.google_oauth import GoogleOAuthClient
from ..models.sync_status import SyncStatus
from .reconciler import MasterEventCache, RecurrenceStrategy, SeriesReconciler
from .token_manager import OAuthTokens, TokenManager

logger = logging.getLogger(__name__)

PROVIDER_GOOGLE = 'GOOGLE'


class CalendarSyncService:
    """Connects Google accounts, attaches calendars as feeds and mirrors their events"""

    def __init__(self, database_manager: DatabaseManager, token_manager: TokenManager,
                 oauth_client: GoogleOAuthClient,
                 calendar_client_factory: Callable[..., GoogleCalendarClient] = GoogleCalendarClient,
                 timezone: str = 'America/Los_Angeles',
                 page_size: int = 2000,
                 default_strategy: RecurrenceStrategy = RecurrenceStrategy.PROPAGATE,
                 clock: Callable[[], datetime] = None):
        self.database_manager = database_manager
        self.token_manager = token_manager
        self.oauth_client = oauth_client
        self.calendar_client_factory = calendar_client_factory
        self.timezone = ZoneInfo(timezone)
        self.page_size = page_size
        self.default_strategy = RecurrenceStrategy(default_strategy)
        self.clock = clock or (lambda: datetime.now(self.timezone))

    def current_year_window(self) -> Tuple[datetime, datetime]:
        year = self.clock().astimezone(self.timezone).year
        return (
            datetime(year, 1, 1, tzinfo=self.timezone),
            datetime(year + 1, 1, 1, tzinfo=self.timezone),
        )

    def _calendar_client(self, account_id: str, user_id: str) -> GoogleCalendarClient:
        credentials = self.token_manager.get_credentials(account_id, user_id)
        return self.calendar_client_factory(credentials)

    def complete_oauth(self, user_id: str, code: Optional[str]) -> Dict[str, Any]:
        """Exchange ``code``, store the account and attach every listed calendar as a feed"""
        if not code:
            raise ValidationError("No code provided")

        try:
            credentials = self.oauth_client.exchange_code(code)
            email = self.oauth_client.get_user_email(credentials)
        except FeedSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to exchange code for tokens: {str(e)}")
            raise RemoteAuthError("Failed to authenticate with Google") from e

        if not email:
            raise ValidationError("Could not get user email")

        account_id = self.token_manager.store_tokens(
            PROVIDER_GOOGLE, email, OAuthTokens.from_credentials(credentials), user_id
        )

        try:
            calendars = self.calendar_client_factory(credentials).get_calendar_list()
        except FeedSyncError:
            raise
        except Exception as e:
            logger.error(f"Failed to list calendars for account {account_id}: {str(e)}")
            raise RemoteAuthError("Failed to authenticate with Google") from e

        created = 0
        with self.database_manager.transaction() as session:
            for cal in calendars:
                if not cal.get('id') or not cal.get('summary'):
                    continue

                existing_feed = session.query(CalendarFeed).filter_by(
                    type=PROVIDER_GOOGLE, url=cal['id'], account_id=account_id, user_id=user_id
                ).first()
                if existing_feed:
                    continue

                session.add(CalendarFeed(
                    id=str(uuid.uuid4()),
                    name=cal['summary'],
                    url=cal['id'],
                    type=PROVIDER_GOOGLE,
                    color=cal.get('backgroundColor'),
                    recurrence_strategy=self.default_strategy.value,
                    account_id=account_id,
                    user_id=user_id,
                ))
                created += 1

        logger.info(f"Connected account {account_id}: {created} new feeds from {len(calendars)} calendars")
        return {'account_id': account_id, 'email': email, 'feeds_created': created}

    def add_feed(self, user_id: str, account_id: Optional[str], calendar_id: Optional[str],
                 name: Optional[str] = None, color: Optional[str] = None) -> Dict[str, Any]:
        """Attach a remote calendar as a feed and sync the current year into it"""
        if not account_id or not calendar_id:
            raise ValidationError("Account ID and Calendar ID are required")

        with self.database_manager.transaction() as session:
            account = session.query(ConnectedAccount).filter_by(id=account_id, user_id=user_id).first()
            if not account:
                raise NotFoundError("Account not found")

            existing_feed = session.query(CalendarFeed).filter_by(
                type=PROVIDER_GOOGLE, url=calendar_id, account_id=account_id, user_id=user_id
            ).first()
            if existing_feed:
                return existing_feed.to_dict()

        client = self._calendar_client(account_id, user_id)

        try:
            calendar = client.get_calendar(calendar_id)
        except HttpError as e:
            logger.error(f"Failed to access calendar {calendar_id}: {str(e)}")
            raise RemoteAccessError("Failed to access calendar") from e

        with self.database_manager.transaction() as session:
            feed = CalendarFeed(
                id=str(uuid.uuid4()),
                name=name or calendar.get('summary') or calendar_id,
                url=calendar_id,
                type=PROVIDER_GOOGLE,
                color=color,
                recurrence_strategy=self.default_strategy.value,
                account_id=account_id,
                user_id=user_id,
            )
            session.add(feed)

        try:
            time_min, time_max = self.current_year_window()
            events = client.get_events(calendar_id, time_min, time_max)
            cache = MasterEventCache(lambda event_id: client.get_event(calendar_id, event_id))
            cache.prefetch(events)

            if events:
                with self.database_manager.transaction() as session:
                    reconciler = SeriesReconciler(session, feed.id, feed.recurrence_strategy)
                    result = reconciler.apply(events, cache)
                    stored = session.get(CalendarFeed, feed.id)
                    stored.last_sync = self.clock()
                    stored.error = None
                    feed = stored
                logger.info(f"Initial sync of feed {feed.id} stored {result.events_synced} events")
        except Exception as e:
            logger.error(f"Initial sync of feed {feed.id} failed: {str(e)}")
            self._record_sync_error(feed.id, e)
            raise

        return feed.to_dict()

    def resync_feed(self, user_id: str, feed_id: Optional[str]) -> SyncStatus:
        """Replace all events of a feed with the current-year window from Google.

        Everything remote is fetched before the write transaction opens; the
        delete and re-insert then commit together or not at all.
        """
        if not feed_id:
            raise ValidationError("Feed ID is required")

        with self.database_manager.transaction() as session:
            feed = session.query(CalendarFeed).filter_by(id=feed_id, user_id=user_id).first()

        if not feed or not feed.account_id or not feed.url:
            raise NotFoundError("Feed not found")

        try:
            client = self._calendar_client(feed.account_id, user_id)
            logger.info(f"Fetching events from Google Calendar: {feed.url}")
            time_min, time_max = self.current_year_window()
            events = client.get_events(feed.url, time_min, time_max, max_results=self.page_size)
            logger.info(f"Found {len(events)} events in Google Calendar")

            cache = MasterEventCache(lambda event_id: client.get_event(feed.url, event_id))
            cache.prefetch(events)

            with self.database_manager.transaction() as session:
                deleted = session.query(CalendarEvent).filter(
                    CalendarEvent.feed_id == feed_id
                ).delete(synchronize_session=False)
                logger.info(f"Deleted {deleted} existing events for feed {feed_id}")

                reconciler = SeriesReconciler(session, feed_id, feed.recurrence_strategy)
                result = reconciler.apply(events, cache)

                stored = session.get(CalendarFeed, feed_id)
                stored.last_sync = self.clock()
                stored.error = None
        except Exception as e:
            logger.error(f"Failed to sync Google calendar {feed_id}: {str(e)}")
            self._record_sync_error(feed_id, e)
            raise

        logger.info(f"Successfully synced calendar: {feed_id}")
        return SyncStatus(
            events_synced=result.events_synced,
            masters_synced=result.masters_synced,
            events_deleted=deleted,
            skipped_events=result.skipped_events,
            failed_masters=result.failed_masters,
        )

    def _record_sync_error(self, feed_id: str, error: Exception):
        message = error.message if isinstance(error, FeedSyncError) else "Failed to sync calendar"
        try:
            with self.database_manager.transaction() as session:
                feed = session.get(CalendarFeed, feed_id)
                if feed:
                    feed.error = message
        except Exception as e:
            logger.error(f"Could not record sync error for feed {feed_id}: {str(e)}")
