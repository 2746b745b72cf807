"""Reconciliation of recurring series against their expanded instances.

Google's ``events.list(singleEvents=True)`` returns occurrences of recurring
series as individual instances that only point at their series through
``recurringEventId``. Two ways of storing them are supported:

``materialize``
    each referenced series gets its own master row carrying the normalized
    rule, and every instance links to it through ``master_event_id``.

``propagate``
    no master rows; the series' recurrence array is attached to every instance
    so each instance carries the rule itself.

A feed always uses the strategy it was created with.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging
import uuid

from sqlalchemy.orm import Session

from ..database.models import CalendarEvent
from .event_mapper import has_start, map_google_event

logger = logging.getLogger(__name__)


class RecurrenceStrategy(str, Enum):
    PROPAGATE = 'propagate'
    MATERIALIZE = 'materialize'


def recurring_event_ids(events: Iterable[Dict[str, Any]]) -> List[str]:
    """Distinct series ids referenced by instances, in first-seen order"""
    seen = []
    for event in events:
        series_id = event.get('recurringEventId')
        if isinstance(series_id, str) and series_id and series_id not in seen:
            seen.append(series_id)
    return seen


class MasterEventCache:
    """Master events fetched lazily during a single synchronization pass.

    A failed fetch is remembered as ``None`` so the series is neither retried
    nor allowed to abort the pass.
    """

    def __init__(self, fetch: Callable[[str], Dict[str, Any]]):
        self._fetch = fetch
        self._masters: Dict[str, Optional[Dict[str, Any]]] = {}
        self.failed: List[str] = []

    def seed(self, event: Dict[str, Any]):
        """Record a master that was already part of the listed events"""
        if event.get('id'):
            self._masters[event['id']] = event

    def get(self, series_id: str) -> Optional[Dict[str, Any]]:
        if series_id not in self._masters:
            try:
                self._masters[series_id] = self._fetch(series_id)
            except Exception as e:
                logger.error(f"Failed to fetch master event {series_id}: {str(e)}")
                self._masters[series_id] = None
                self.failed.append(series_id)
        return self._masters[series_id]

    def recurrence(self, series_id: str) -> Optional[list]:
        master = self.get(series_id)
        if master is None:
            return None
        recurrence = master.get('recurrence')
        return recurrence if isinstance(recurrence, list) else None

    def is_series_definition(self, event: Dict[str, Any]) -> bool:
        """True for a listed event that is itself the master of a referenced series"""
        if event.get('recurringEventId') or not event.get('id'):
            return False
        return self._masters.get(event['id']) is event

    def prefetch(self, events: List[Dict[str, Any]]):
        """Resolve every series referenced by ``events``.

        Listed events whose id is itself a referenced series seed the cache
        instead of being fetched again.
        """
        series_ids = recurring_event_ids(events)
        for event in events:
            if event.get('id') in series_ids and not event.get('recurringEventId'):
                self.seed(event)
        for series_id in series_ids:
            self.get(series_id)

    def masters(self) -> Dict[str, Dict[str, Any]]:
        return {series_id: master for series_id, master in self._masters.items() if master is not None}


@dataclass
class ReconcileResult:
    events_synced: int = 0
    masters_synced: int = 0
    skipped_events: int = 0
    failed_masters: List[str] = field(default_factory=list)


class SeriesReconciler:
    """Writes one pass of remote events for a feed using a single strategy"""

    def __init__(self, session: Session, feed_id: str, strategy: RecurrenceStrategy):
        self.session = session
        self.feed_id = feed_id
        self.strategy = RecurrenceStrategy(strategy)
        self._existing: Dict[tuple, CalendarEvent] = {}

    def _load_existing(self):
        rows = self.session.query(CalendarEvent).filter(CalendarEvent.feed_id == self.feed_id).all()
        self._existing = {(row.external_event_id, bool(row.is_master)): row for row in rows}

    def _upsert(self, record: Dict[str, Any]) -> CalendarEvent:
        key = (record['external_event_id'], record['is_master'])
        row = self._existing.get(key)
        if row is None:
            row = CalendarEvent(id=str(uuid.uuid4()), **record)
            self.session.add(row)
            self._existing[key] = row
        else:
            for name, value in record.items():
                setattr(row, name, value)
        return row

    def apply(self, events: List[Dict[str, Any]], cache: MasterEventCache) -> ReconcileResult:
        """Upsert ``events`` keyed by (feed, external id, master flag).

        ``cache.prefetch(events)`` should already have run so no network call
        happens here; any series not yet resolved is fetched on demand.
        """
        self._load_existing()
        result = ReconcileResult()

        cache.prefetch(events)
        placeable = [event for event in events if has_start(event)]
        result.skipped_events = len(events) - len(placeable)
        if result.skipped_events:
            logger.info(f"Skipping {result.skipped_events} events without a start for feed {self.feed_id}")

        if self.strategy is RecurrenceStrategy.MATERIALIZE:
            master_rows = self._write_masters(cache, result)
            # A listed series definition is stored as its master row only
            placeable = [event for event in placeable if not cache.is_series_definition(event)]
            for event in placeable:
                master = self._master_for(event.get('recurringEventId'), master_rows)
                record = map_google_event(
                    event,
                    self.feed_id,
                    master_event_id=master.id if master else None,
                    include_rule=master is None,
                )
                self._upsert(record)
                result.events_synced += 1
        else:
            for event in placeable:
                recurrence = None
                if event.get('recurringEventId'):
                    recurrence = cache.recurrence(event['recurringEventId'])
                self._upsert(map_google_event(event, self.feed_id, recurrence=recurrence))
                result.events_synced += 1

        self.session.flush()
        result.failed_masters = list(cache.failed)
        return result

    def _master_for(self, series_id: Optional[str],
                    master_rows: Dict[str, CalendarEvent]) -> Optional[CalendarEvent]:
        """Master row for a series: written in this pass, else already stored for the feed"""
        if not series_id:
            return None
        master = master_rows.get(series_id)
        if master is None:
            master = self._existing.get((series_id, True))
        return master

    def _write_masters(self, cache: MasterEventCache, result: ReconcileResult) -> Dict[str, CalendarEvent]:
        master_rows = {}
        for series_id, master in cache.masters().items():
            if not has_start(master):
                logger.warning(f"Master event {series_id} has no start, instances stay unlinked")
                continue
            record = map_google_event(master, self.feed_id, is_master=True)
            record['external_event_id'] = series_id
            master_rows[series_id] = self._upsert(record)
            result.masters_synced += 1
        # Masters must exist before instances reference them
        self.session.flush()
        return master_rows
