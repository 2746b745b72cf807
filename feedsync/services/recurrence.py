"""Normalization of Google recurrence arrays into a single RRULE string.

Google returns ``recurrence`` as a list that may mix ``RRULE:``, ``EXRULE:``,
``RDATE:`` and ``EXDATE:`` lines. Only the first ``RRULE:`` line is kept.

Yearly rules frequently omit ``BYMONTH``/``BYMONTHDAY`` because Google infers
them from the event's start date. Recurrence expanders need them spelled out,
so they are synthesized from the start date at ingestion time.
"""
from datetime import date
from typing import Optional, Sequence

RRULE_PREFIX = 'RRULE:'


def _components(rule: str):
    return rule[len(RRULE_PREFIX):].split(';')


def _has_component(components, name: str) -> bool:
    return any(part.upper().startswith(f'{name}=') for part in components)


def rule_frequency(rule: str) -> Optional[str]:
    for part in _components(rule):
        if part.upper().startswith('FREQ='):
            return part.split('=', 1)[1].upper()
    return None


def normalize_recurrence_rule(recurrence: Optional[Sequence[str]],
                              start: Optional[date] = None) -> Optional[str]:
    """Pick the RRULE out of ``recurrence`` and anchor yearly rules to ``start``.

    ``start`` may be a ``date`` or a ``datetime``; only its month and day are
    used. Returns ``None`` when there is no RRULE line.
    """
    if not recurrence:
        return None

    rrule = next((line for line in recurrence if line and line.startswith(RRULE_PREFIX)), None)
    if rrule is None:
        return None

    if start is None or rule_frequency(rrule) != 'YEARLY':
        return rrule

    components = _components(rrule)
    if _has_component(components, 'BYMONTH') and _has_component(components, 'BYMONTHDAY'):
        return rrule

    kept = [
        part for part in components
        if not part.upper().startswith(('BYMONTH=', 'BYMONTHDAY='))
    ]
    kept.append(f'BYMONTH={start.month}')
    kept.append(f'BYMONTHDAY={start.day}')
    return RRULE_PREFIX + ';'.join(kept)
