"""Single mapping point from Google's event resource to local record fields."""
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Union

from dateutil import parser as date_parser

from .recurrence import normalize_recurrence_rule

DEFAULT_TITLE = 'Untitled Event'

EventTimeValue = Union[date, datetime]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC"""
    if not value:
        return None
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_event_time(value: Optional[Dict[str, Any]]) -> Optional[EventTimeValue]:
    """Return a ``datetime`` for ``dateTime`` values, a ``date`` for all-day ``date`` values"""
    if not value:
        return None
    if value.get('dateTime'):
        return parse_timestamp(value['dateTime'])
    if value.get('date'):
        return date.fromisoformat(value['date'])
    return None


def has_start(event: Dict[str, Any]) -> bool:
    start = event.get('start') or {}
    return bool(start.get('dateTime') or start.get('date'))


def is_all_day(event: Dict[str, Any]) -> bool:
    start = event.get('start')
    return bool(start) and not start.get('dateTime')


def map_organizer(organizer: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not organizer:
        return None
    return {'name': organizer.get('displayName'), 'email': organizer.get('email')}


def map_attendees(attendees) -> Optional[list]:
    if attendees is None:
        return None
    return [
        {
            'name': attendee.get('displayName'),
            'email': attendee.get('email'),
            'status': attendee.get('responseStatus'),
        }
        for attendee in attendees
    ]


def map_google_event(event: Dict[str, Any], feed_id: str, *,
                     is_master: bool = False,
                     master_event_id: Optional[str] = None,
                     recurrence: Optional[list] = None,
                     include_rule: bool = True) -> Dict[str, Any]:
    """Build the column values of a ``CalendarEvent`` from a Google event.

    ``recurrence`` overrides the event's own recurrence array (used to carry a
    series rule onto its instances). With ``include_rule=False`` no rule is
    stored, which is how instances defer to a materialized master.
    """
    start = parse_event_time(event.get('start'))
    end = parse_event_time(event.get('end')) or start
    all_day = is_all_day(event)
    if recurrence is None:
        recurrence = event.get('recurrence')

    recurrence_rule = normalize_recurrence_rule(recurrence, start) if include_rule else None

    if is_master:
        is_recurring = True
    else:
        is_recurring = bool(event.get('recurringEventId') or recurrence)

    return {
        'feed_id': feed_id,
        'external_event_id': event.get('id'),
        'title': event.get('summary') or DEFAULT_TITLE,
        'description': event.get('description') or '',
        'start': start,
        'end': end,
        'location': event.get('location'),
        'all_day': all_day,
        'is_recurring': is_recurring,
        'is_master': is_master,
        'master_event_id': None if is_master else master_event_id,
        'recurring_event_id': event.get('recurringEventId'),
        'recurrence_rule': recurrence_rule,
        'status': event.get('status'),
        'sequence': event.get('sequence'),
        'created': parse_timestamp(event.get('created')),
        'last_modified': parse_timestamp(event.get('updated')),
        'organizer': map_organizer(event.get('organizer')),
        'attendees': map_attendees(event.get('attendees')),
    }
