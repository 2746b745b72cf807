from datetime import datetime
from typing import Optional, List, Dict, Any
import logging
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..errors import RemoteAuthError

logger = logging.getLogger(__name__)


def _rfc3339(value) -> str:
    if isinstance(value, str):
        return value
    return value.isoformat()


class GoogleCalendarClient:
    """Thin wrapper over the Calendar v3 API for one account's credentials.

    HTTP 401 responses and failed token refreshes are raised as
    ``RemoteAuthError``; every other ``HttpError`` propagates unchanged so the
    caller can decide whether it is fatal.
    """

    def __init__(self, credentials: Credentials, service=None):
        self.credentials = credentials
        self.service = service or build('calendar', 'v3', credentials=credentials, cache_discovery=False)

    def _execute(self, request):
        try:
            return request.execute()
        except RefreshError as e:
            logger.error(f"Google credentials could not be refreshed: {str(e)}")
            raise RemoteAuthError("Authentication failed. Please try signing in again.") from e
        except HttpError as e:
            if e.resp is not None and int(e.resp.status) == 401:
                raise RemoteAuthError("Authentication failed. Please try signing in again.") from e
            raise

    def get_calendar_list(self) -> List[Dict[str, Any]]:
        """Get every calendar on the account's calendar list"""
        calendars = []
        request = self.service.calendarList().list()
        while request is not None:
            response = self._execute(request)
            calendars.extend(response.get('items', []))
            request = self.service.calendarList().list_next(request, response)
        logger.info(f"Retrieved {len(calendars)} calendars")
        return calendars

    def get_calendar(self, calendar_id: str) -> Dict[str, Any]:
        """Get calendar metadata; fails if the calendar is not accessible"""
        return self._execute(self.service.calendars().get(calendarId=calendar_id))

    def get_events(self, calendar_id: str, time_min: datetime, time_max: datetime,
                   max_results: Optional[int] = None) -> List[Dict[str, Any]]:
        """Get events in a window with recurring series expanded into instances"""
        params = {
            'calendarId': calendar_id,
            'timeMin': _rfc3339(time_min),
            'timeMax': _rfc3339(time_max),
            'singleEvents': True,
            'orderBy': 'startTime',
        }
        if max_results:
            params['maxResults'] = max_results

        logger.info(f"Fetching events for calendar {calendar_id} from {params['timeMin']} to {params['timeMax']}")

        events = []
        request = self.service.events().list(**params)
        while request is not None:
            response = self._execute(request)
            events.extend(response.get('items', []))
            request = self.service.events().list_next(request, response)

        return events

    def get_event(self, calendar_id: str, event_id: str) -> Dict[str, Any]:
        """Get a single event, e.g. the master of a recurring series"""
        return self._execute(self.service.events().get(calendarId=calendar_id, eventId=event_id))
