import uuid
from datetime import date, datetime, timezone

import pytest

from conftest import (
    NOW, OTHER_USER_ID, USER_ID, all_day_event, build_sync_service, create_feed, feed_events,
    http_error, timed_event
)
from feedsync.database.models import CalendarEvent, CalendarFeed, ConnectedAccount
from feedsync.errors import (
    NotFoundError, RemoteAccessError, RemoteAuthError, ValidationError
)
from feedsync.services import reconciler
from feedsync.services.reconciler import RecurrenceStrategy

CALENDAR_ID = "team@group.calendar.google.com"


def seed_events(db_manager, feed_id, count):
    with db_manager.transaction() as session:
        for index in range(count):
            session.add(CalendarEvent(
                id=str(uuid.uuid4()),
                feed_id=feed_id,
                external_event_id=f"old-{index}",
                title=f"Old {index}",
                start=date(2023, 1, index + 1),
                end=date(2023, 1, index + 2),
                all_day=True,
            ))


def remote_events():
    return [
        timed_event("standup", "2024-03-15T09:00:00Z", "2024-03-15T09:15:00Z", summary="Standup"),
        all_day_event("offsite", "2024-04-10", "2024-04-12", summary="Offsite"),
        all_day_event("bday_20240704", "2024-07-04", "2024-07-05", recurringEventId="bday"),
    ]


@pytest.fixture
def feed_id(db_manager, account):
    return create_feed(db_manager, account, calendar_id=CALENDAR_ID)


class TestResyncFeed:
    def test_replaces_existing_events(self, db_manager, sync_service, calendar_client, feed_id):
        seed_events(db_manager, feed_id, 5)
        calendar_client.events[CALENDAR_ID] = remote_events()
        calendar_client.masters["bday"] = {
            "id": "bday", "recurrence": ["RRULE:FREQ=YEARLY"], "start": {"date": "1990-07-04"},
        }

        status = sync_service.resync_feed(USER_ID, feed_id)

        rows = feed_events(db_manager, feed_id)
        assert sorted(row.external_event_id for row in rows) == ["bday_20240704", "offsite", "standup"]
        assert status.events_synced == 3
        assert status.events_deleted == 5
        bday = next(row for row in rows if row.external_event_id == "bday_20240704")
        assert bday.recurrence_rule == "RRULE:FREQ=YEARLY;BYMONTH=7;BYMONTHDAY=4"

    def test_requests_current_year_with_page_size(self, sync_service, calendar_client, feed_id):
        calendar_client.events[CALENDAR_ID] = []

        sync_service.resync_feed(USER_ID, feed_id)

        [call] = calendar_client.calls_to("events.list")
        _, calendar_id, time_min, time_max, max_results = call
        assert calendar_id == CALENDAR_ID
        assert time_min == datetime(2024, 1, 1, tzinfo=time_min.tzinfo)
        assert time_max == datetime(2025, 1, 1, tzinfo=time_max.tzinfo)
        assert max_results == 2000

    def test_empty_remote_calendar_clears_feed(self, db_manager, sync_service, calendar_client, feed_id):
        seed_events(db_manager, feed_id, 3)
        calendar_client.events[CALENDAR_ID] = []

        sync_service.resync_feed(USER_ID, feed_id)

        assert feed_events(db_manager, feed_id) == []

    def test_drops_events_without_start(self, db_manager, sync_service, calendar_client, feed_id):
        calendar_client.events[CALENDAR_ID] = remote_events() + [{"id": "tbd", "start": {}, "end": {}}]

        status = sync_service.resync_feed(USER_ID, feed_id)

        ids = {row.external_event_id for row in feed_events(db_manager, feed_id)}
        assert "tbd" not in ids
        assert status.skipped_events == 1

    def test_all_day_events_are_stored_as_dates(self, db_manager, sync_service, calendar_client, feed_id):
        calendar_client.events[CALENDAR_ID] = [all_day_event("offsite", "2024-04-10", "2024-04-12")]

        sync_service.resync_feed(USER_ID, feed_id)

        [row] = feed_events(db_manager, feed_id)
        assert row.all_day is True
        assert type(row.start) is date
        assert type(row.end) is date
        assert row.start == date(2024, 4, 10)

    def test_timed_events_round_trip_as_instants(self, db_manager, sync_service, calendar_client, feed_id):
        calendar_client.events[CALENDAR_ID] = [
            timed_event("call", "2024-03-15T09:00:00-07:00", "2024-03-15T10:00:00-07:00")
        ]

        sync_service.resync_feed(USER_ID, feed_id)

        [row] = feed_events(db_manager, feed_id)
        assert row.all_day is False
        assert row.start == datetime(2024, 3, 15, 16, 0, tzinfo=timezone.utc)

    def test_remote_failure_keeps_previous_events(self, db_manager, sync_service, calendar_client, feed_id):
        seed_events(db_manager, feed_id, 4)
        calendar_client.list_error = http_error(500, "Backend Error")

        with pytest.raises(Exception):
            sync_service.resync_feed(USER_ID, feed_id)

        assert len(feed_events(db_manager, feed_id)) == 4
        with db_manager.transaction() as session:
            assert session.get(CalendarFeed, feed_id).error == "Failed to sync calendar"

    def test_storage_failure_rolls_back_delete(self, db_manager, sync_service, calendar_client,
                                               feed_id, monkeypatch):
        seed_events(db_manager, feed_id, 4)
        calendar_client.events[CALENDAR_ID] = remote_events()

        def broken_apply(self, events, cache):
            raise RuntimeError("disk full")

        monkeypatch.setattr(reconciler.SeriesReconciler, "apply", broken_apply)

        with pytest.raises(RuntimeError):
            sync_service.resync_feed(USER_ID, feed_id)

        rows = feed_events(db_manager, feed_id)
        assert sorted(row.external_event_id for row in rows) == ["old-0", "old-1", "old-2", "old-3"]

    def test_expired_remote_credentials(self, db_manager, sync_service, calendar_client, feed_id):
        calendar_client.list_error = RemoteAuthError("Authentication failed. Please try signing in again.")

        with pytest.raises(RemoteAuthError):
            sync_service.resync_feed(USER_ID, feed_id)

        with db_manager.transaction() as session:
            assert "signing in again" in session.get(CalendarFeed, feed_id).error

    def test_success_records_last_sync(self, db_manager, sync_service, calendar_client, feed_id):
        with db_manager.transaction() as session:
            session.get(CalendarFeed, feed_id).error = "previous failure"
        calendar_client.events[CALENDAR_ID] = []

        sync_service.resync_feed(USER_ID, feed_id)

        with db_manager.transaction() as session:
            feed = session.get(CalendarFeed, feed_id)
            assert feed.error is None
            assert feed.last_sync.replace(tzinfo=None) == NOW.replace(tzinfo=None)

    def test_requires_feed_id(self, sync_service, calendar_client):
        with pytest.raises(ValidationError):
            sync_service.resync_feed(USER_ID, None)
        assert calendar_client.calls == []

    def test_feed_of_other_user_is_not_found(self, sync_service, calendar_client, feed_id):
        with pytest.raises(NotFoundError):
            sync_service.resync_feed(OTHER_USER_ID, feed_id)
        assert calendar_client.calls == []

    def test_materialized_feed_keeps_master_rows(self, db_manager, token_manager, oauth_client,
                                                 calendar_client, account):
        feed_id = create_feed(db_manager, account, calendar_id=CALENDAR_ID, strategy="materialize")
        service = build_sync_service(db_manager, token_manager, oauth_client, calendar_client,
                                     strategy=RecurrenceStrategy.PROPAGATE)
        calendar_client.events[CALENDAR_ID] = remote_events()
        calendar_client.masters["bday"] = {
            "id": "bday", "recurrence": ["RRULE:FREQ=YEARLY"], "start": {"date": "1990-07-04"},
        }

        status = service.resync_feed(USER_ID, feed_id)

        rows = feed_events(db_manager, feed_id)
        [master] = [row for row in rows if row.is_master]
        bday = next(row for row in rows if row.external_event_id == "bday_20240704")
        assert bday.master_event_id == master.id
        assert bday.recurrence_rule is None
        assert status.masters_synced == 1


class TestAddFeed:
    def test_creates_feed_and_syncs_current_year(self, db_manager, sync_service, calendar_client, account):
        calendar_client.calendars[CALENDAR_ID] = {"summary": "Team calendar"}
        calendar_client.events[CALENDAR_ID] = remote_events()
        calendar_client.masters["bday"] = {
            "id": "bday", "recurrence": ["RRULE:FREQ=YEARLY"], "start": {"date": "1990-07-04"},
        }

        feed = sync_service.add_feed(USER_ID, account, CALENDAR_ID, "Team", "#ff0000")

        assert feed["name"] == "Team"
        assert feed["color"] == "#ff0000"
        assert feed["url"] == CALENDAR_ID
        assert feed["recurrence_strategy"] == "propagate"
        assert feed["last_sync"] == NOW.isoformat()
        assert len(feed_events(db_manager, feed["id"])) == 3
        assert calendar_client.calls_to("events.get") == [("events.get", CALENDAR_ID, "bday")]

    def test_name_falls_back_to_calendar_summary(self, sync_service, calendar_client, account):
        calendar_client.calendars[CALENDAR_ID] = {"summary": "Team calendar"}

        feed = sync_service.add_feed(USER_ID, account, CALENDAR_ID)

        assert feed["name"] == "Team calendar"

    def test_existing_feed_is_returned(self, db_manager, sync_service, calendar_client, account):
        feed_id = create_feed(db_manager, account, calendar_id=CALENDAR_ID)

        feed = sync_service.add_feed(USER_ID, account, CALENDAR_ID, "Other name")

        assert feed["id"] == feed_id
        assert calendar_client.calls == []

    @pytest.mark.parametrize("account_id, calendar_id", [(None, CALENDAR_ID), ("acct", None), ("", "")])
    def test_requires_identifiers(self, sync_service, calendar_client, account_id, calendar_id):
        with pytest.raises(ValidationError):
            sync_service.add_feed(USER_ID, account_id, calendar_id)
        assert calendar_client.calls == []

    def test_account_of_other_user_is_not_found(self, sync_service, calendar_client, account):
        with pytest.raises(NotFoundError):
            sync_service.add_feed(OTHER_USER_ID, account, CALENDAR_ID)
        assert calendar_client.calls == []

    def test_inaccessible_calendar(self, db_manager, sync_service, calendar_client, account):
        with pytest.raises(RemoteAccessError):
            sync_service.add_feed(USER_ID, account, "someone-else@example.com")

        with db_manager.transaction() as session:
            assert session.query(CalendarFeed).count() == 0

    def test_failed_initial_sync_is_recorded_on_feed(self, db_manager, sync_service, calendar_client, account):
        calendar_client.calendars[CALENDAR_ID] = {"summary": "Team calendar"}
        calendar_client.list_error = RemoteAuthError("Authentication failed. Please try signing in again.")

        with pytest.raises(RemoteAuthError):
            sync_service.add_feed(USER_ID, account, CALENDAR_ID)

        with db_manager.transaction() as session:
            feed = session.query(CalendarFeed).filter_by(url=CALENDAR_ID).one()
            assert feed.error == "Authentication failed. Please try signing in again."
            assert feed.last_sync is None

    def test_materialize_strategy_links_instances(self, db_manager, token_manager, oauth_client,
                                                  calendar_client, account):
        service = build_sync_service(db_manager, token_manager, oauth_client, calendar_client,
                                     strategy=RecurrenceStrategy.MATERIALIZE)
        calendar_client.calendars[CALENDAR_ID] = {"summary": "Team calendar"}
        calendar_client.events[CALENDAR_ID] = remote_events()
        calendar_client.masters["bday"] = {
            "id": "bday", "recurrence": ["RRULE:FREQ=YEARLY"], "start": {"date": "1990-07-04"},
        }

        feed = service.add_feed(USER_ID, account, CALENDAR_ID)

        rows = feed_events(db_manager, feed["id"])
        [master] = [row for row in rows if row.is_master]
        assert master.recurrence_rule == "RRULE:FREQ=YEARLY;BYMONTH=7;BYMONTHDAY=4"
        assert feed["recurrence_strategy"] == "materialize"
        assert len(rows) == 4


class TestCompleteOAuth:
    def test_connects_account_and_calendars(self, db_manager, sync_service, calendar_client, oauth_client):
        calendar_client.calendars = {
            "primary-id": {"summary": "Owner", "backgroundColor": "#123456"},
            "holidays-id": {"summary": "Holidays"},
            "nameless-id": {},
        }

        result = sync_service.complete_oauth(USER_ID, "good-code")

        assert oauth_client.exchanged == ["good-code"]
        assert result["email"] == "owner@example.com"
        assert result["feeds_created"] == 2
        with db_manager.transaction() as session:
            account = session.get(ConnectedAccount, result["account_id"])
            assert account.user_id == USER_ID
            assert account.refresh_token == "refresh-token"
            feeds = {feed.url: feed for feed in session.query(CalendarFeed).all()}
        assert set(feeds) == {"primary-id", "holidays-id"}
        assert feeds["primary-id"].color == "#123456"
        assert feeds["primary-id"].name == "Owner"

    def test_repeated_connection_does_not_duplicate(self, db_manager, sync_service, calendar_client):
        calendar_client.calendars = {"primary-id": {"summary": "Owner"}}

        first = sync_service.complete_oauth(USER_ID, "code-1")
        second = sync_service.complete_oauth(USER_ID, "code-2")

        assert first["account_id"] == second["account_id"]
        assert second["feeds_created"] == 0
        with db_manager.transaction() as session:
            assert session.query(CalendarFeed).count() == 1
            assert session.query(ConnectedAccount).count() == 1

    def test_missing_code(self, sync_service, oauth_client):
        with pytest.raises(ValidationError):
            sync_service.complete_oauth(USER_ID, "")
        assert oauth_client.exchanged == []

    def test_failed_exchange(self, sync_service):
        with pytest.raises(RemoteAuthError) as excinfo:
            sync_service.complete_oauth(USER_ID, "bad-code")
        assert excinfo.value.message == "Failed to authenticate with Google"

    def test_missing_email(self, db_manager, sync_service, oauth_client):
        oauth_client.email = None

        with pytest.raises(ValidationError):
            sync_service.complete_oauth(USER_ID, "good-code")

        with db_manager.transaction() as session:
            assert session.query(ConnectedAccount).count() == 0


def test_window_follows_clock(sync_service):
    time_min, time_max = sync_service.current_year_window()
    assert (time_min.year, time_min.month, time_min.day) == (NOW.year, 1, 1)
    assert (time_max.year, time_max.month, time_max.day) == (NOW.year + 1, 1, 1)
