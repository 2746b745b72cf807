import os
import uuid
from datetime import datetime, timedelta, timezone

# Keep ConfigManager away from the system keyring during tests
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

import httplib2
import pytest
from googleapiclient.errors import HttpError

from feedsync.database.connection import DatabaseManager
from feedsync.database.models import CalendarEvent, CalendarFeed, ConnectedAccount
from feedsync.services.calendar_sync_service import CalendarSyncService
from feedsync.services.reconciler import RecurrenceStrategy
from feedsync.services.token_manager import TokenManager

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def http_error(status, reason="error"):
    return HttpError(httplib2.Response({"status": status, "reason": reason}), reason.encode())


class FakeCredentials:
    def __init__(self, token="access-token", refresh_token="refresh-token", expiry=None, scopes=None):
        self.token = token
        self.refresh_token = refresh_token
        self.expiry = expiry or datetime(2099, 1, 1)
        self.scopes = scopes or ["https://www.googleapis.com/auth/calendar.readonly"]


class FakeOAuthClient:
    def __init__(self, email="owner@example.com"):
        self.email = email
        self.exchanged = []

    def authorization_url(self, state=None):
        return "https://accounts.google.com/o/oauth2/auth?client_id=test"

    def exchange_code(self, code):
        if code == "bad-code":
            raise ValueError("invalid_grant")
        self.exchanged.append(code)
        return FakeCredentials()

    def get_user_email(self, credentials):
        return self.email


class FakeCalendarClient:
    """In-memory stand-in for GoogleCalendarClient"""

    def __init__(self):
        self.calendars = {}
        self.events = {}
        self.masters = {}
        self.list_error = None
        self.calls = []

    def get_calendar_list(self):
        self.calls.append(("calendarList",))
        return [dict(calendar, id=calendar_id) for calendar_id, calendar in self.calendars.items()]

    def get_calendar(self, calendar_id):
        self.calls.append(("calendars.get", calendar_id))
        if calendar_id not in self.calendars:
            raise http_error(404, "Not Found")
        return dict(self.calendars[calendar_id], id=calendar_id)

    def get_events(self, calendar_id, time_min, time_max, max_results=None):
        self.calls.append(("events.list", calendar_id, time_min, time_max, max_results))
        if self.list_error is not None:
            raise self.list_error
        return [dict(event) for event in self.events.get(calendar_id, [])]

    def get_event(self, calendar_id, event_id):
        self.calls.append(("events.get", calendar_id, event_id))
        if event_id not in self.masters:
            raise http_error(404, "Not Found")
        return dict(self.masters[event_id])

    def calls_to(self, name):
        return [call for call in self.calls if call[0] == name]


def timed_event(event_id, start, end, **extra):
    event = {"id": event_id, "start": {"dateTime": start}, "end": {"dateTime": end}}
    event.update(extra)
    return event


def all_day_event(event_id, start, end, **extra):
    event = {"id": event_id, "start": {"date": start}, "end": {"date": end}}
    event.update(extra)
    return event


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'feedsync-test.db'}")
    manager.init_database()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def calendar_client():
    return FakeCalendarClient()


@pytest.fixture
def oauth_client():
    return FakeOAuthClient()


@pytest.fixture
def token_manager(db_manager):
    return TokenManager(db_manager, client_id="client-id", client_secret="client-secret")


def build_sync_service(db_manager, token_manager, oauth_client, calendar_client,
                       strategy=RecurrenceStrategy.PROPAGATE):
    return CalendarSyncService(
        db_manager,
        token_manager,
        oauth_client,
        calendar_client_factory=lambda credentials: calendar_client,
        timezone="UTC",
        page_size=2000,
        default_strategy=strategy,
        clock=lambda: NOW,
    )


@pytest.fixture
def sync_service(db_manager, token_manager, oauth_client, calendar_client):
    return build_sync_service(db_manager, token_manager, oauth_client, calendar_client)


@pytest.fixture
def account(db_manager):
    """A connected Google account for USER_ID with a token that is still valid"""
    account_id = str(uuid.uuid4())
    with db_manager.transaction() as session:
        session.add(ConnectedAccount(
            id=account_id,
            user_id=USER_ID,
            provider="GOOGLE",
            email="owner@example.com",
            access_token="access-token",
            refresh_token="refresh-token",
            expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        ))
    return account_id


def create_feed(db_manager, account_id, calendar_id="team@group.calendar.google.com",
                strategy="propagate", user_id=USER_ID):
    feed_id = str(uuid.uuid4())
    with db_manager.transaction() as session:
        session.add(CalendarFeed(
            id=feed_id,
            name="Team",
            url=calendar_id,
            type="GOOGLE",
            recurrence_strategy=strategy,
            account_id=account_id,
            user_id=user_id,
        ))
    return feed_id


def feed_events(db_manager, feed_id):
    with db_manager.transaction() as session:
        return session.query(CalendarEvent).filter_by(feed_id=feed_id).all()
