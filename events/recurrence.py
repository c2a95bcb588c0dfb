"""
Recurring event expansion.

Turns an EventDefinition into the concrete occurrences that fall inside a
time window. The entry points are pure functions: they read the definition,
keep all iteration state local to the call and always return the same
result for the same arguments.

Monthly steps use ``dateutil.relativedelta`` so that a rule anchored on the
31st clamps to the last day of shorter months (Jan 31 -> Feb 29 -> Mar 31).
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from django.conf import settings

from .exceptions import InvalidWindowError
from .models import EventDefinition, ExpansionResult, Occurrence, RecurrenceRule
from .types import MAX_EXPANSION_ITERATIONS, RecurrenceType


logger = logging.getLogger(__name__)


def next_occurrence(
    current: datetime,
    rule: RecurrenceRule,
    anchor_day: Optional[int] = None
) -> datetime:
    """
    Compute the next candidate start strictly after ``current``.

    Args:
        current: Start of the current occurrence
        rule: Validated recurring rule
        anchor_day: Day of month monthly rules return to after clamping
                    (ignored when the rule sets day_of_month)

    Returns:
        The next candidate start instant

    Raises:
        ValueError: If the rule does not recur
    """
    if rule.type == RecurrenceType.DAILY:
        return current + timedelta(days=rule.interval)

    if rule.type == RecurrenceType.WEEKLY:
        return current + timedelta(weeks=rule.interval)

    if rule.type == RecurrenceType.MONTHLY:
        day = rule.day_of_month or anchor_day or current.day
        return current + relativedelta(months=rule.interval, day=day)

    if rule.type == RecurrenceType.CUSTOM:
        return current + timedelta(days=_days_to_next_weekday(current, rule))

    raise ValueError(f"Recurrence type '{rule.type}' has no next occurrence")


def sunday_based_weekday(moment: date) -> int:
    """Weekday ordinal with 0=Sunday .. 6=Saturday."""
    return (moment.weekday() + 1) % 7


def _days_to_next_weekday(current: datetime, rule: RecurrenceRule) -> int:
    """Days from ``current`` to the next configured weekday; always positive."""
    days = rule.sorted_days_of_week
    if not days:
        raise ValueError("Custom recurrence without weekdays reached expansion")

    weekday = sunday_based_weekday(current)
    for day in days:
        if day > weekday:
            return day - weekday

    # No configured day left this week: first configured day, interval weeks on.
    return 7 * rule.interval + days[0] - weekday


def resolve_window(window_start, window_end, tzinfo=None) -> Tuple[datetime, datetime]:
    """
    Normalize window bounds to inclusive datetimes.

    A plain date means the whole day: its start for ``window_start`` and its
    last instant for ``window_end``.

    Raises:
        InvalidWindowError: If window_start is after window_end
    """
    if not isinstance(window_start, datetime):
        window_start = datetime.combine(window_start, time.min, tzinfo=tzinfo)
    if not isinstance(window_end, datetime):
        window_end = datetime.combine(window_end, time.max, tzinfo=tzinfo)

    if window_start > window_end:
        raise InvalidWindowError("Window start must not be after window end")

    return window_start, window_end


def max_expansion_iterations() -> int:
    """Configured per-definition ceiling on in-window candidates."""
    return getattr(settings, 'EVENTS_MAX_EXPANSION_ITERATIONS', MAX_EXPANSION_ITERATIONS)


def skip_to_window(definition: EventDefinition, window_start: datetime) -> Tuple[datetime, int]:
    """
    Jump along a recurring definition's candidates to just before a window.

    Returns a candidate of the rule's sequence that starts before
    ``window_start`` (or the definition's own start) together with its
    zero-based position in the sequence, so ``count`` still applies to the
    whole lifetime of the rule.
    """
    start = definition.start_time
    rule = definition.recurrence
    if start.tzinfo is not None and window_start.tzinfo is not None:
        window_start = window_start.astimezone(start.tzinfo)
    if window_start <= start:
        return start, 0

    if rule.type in (RecurrenceType.DAILY, RecurrenceType.WEEKLY):
        step = timedelta(days=rule.interval) if rule.type == RecurrenceType.DAILY else timedelta(weeks=rule.interval)
        # One step back absorbs DST offsets between wall and absolute time.
        steps = (window_start - start) // step - 1
        if steps < 1:
            return start, 0
        return start + step * steps, steps

    if rule.type == RecurrenceType.MONTHLY:
        months = (window_start.year - start.year) * 12 + window_start.month - start.month
        steps = months // rule.interval - 1
        if steps < 1:
            return start, 0
        day = rule.day_of_month or start.day
        return start + relativedelta(months=rule.interval * steps, day=day), steps

    if rule.type == RecurrenceType.CUSTOM:
        days = rule.sorted_days_of_week
        weekday = sunday_based_weekday(start)
        week_of_start = start.date() - timedelta(days=weekday)
        weeks = (window_start.date() - week_of_start).days // 7
        blocks = weeks // rule.interval - 1
        if blocks < 1:
            return start, 0
        # The start, the rest of its week, then every configured day per visited week.
        position = 1 + sum(1 for day in days if day > weekday) + (blocks - 1) * len(days)
        offset = 7 * rule.interval * blocks + days[0] - weekday
        return start + timedelta(days=offset), position

    raise ValueError(f"Recurrence type '{rule.type}' has no candidate sequence")


def expand(
    definition: EventDefinition,
    window_start,
    window_end,
    max_iterations: int = MAX_EXPANSION_ITERATIONS
) -> ExpansionResult:
    """
    Expand a definition into its occurrences within [window_start, window_end].

    Candidates before the window are skipped arithmetically, keeping their
    lifetime position so that ``count`` bounds the rule over its whole life,
    not just this window. Candidates on exception dates still count towards
    ``count``.

    Args:
        definition: EventDefinition to expand
        window_start: Inclusive window start (datetime or date)
        window_end: Inclusive window end (datetime or date)
        max_iterations: Ceiling on candidates walked inside the window

    Returns:
        ExpansionResult ordered by start time, flagged as truncated when the
        ceiling was reached before the walk finished

    Raises:
        InvalidWindowError: If window_start is after window_end
    """
    window_start, window_end = resolve_window(
        window_start, window_end, definition.start_time.tzinfo
    )
    rule = definition.recurrence

    if not rule.is_recurring:
        if window_start <= definition.start_time <= window_end:
            return ExpansionResult((_make_occurrence(definition, definition.start_time),))
        return ExpansionResult()

    occurrences: List[Occurrence] = []
    anchor_day = definition.start_time.day
    candidate, walked = skip_to_window(definition, window_start)
    in_window = 0
    truncated = False

    while candidate <= window_end:
        if rule.until is not None and candidate > rule.until:
            break
        if rule.count is not None and walked >= rule.count:
            break

        if candidate >= window_start:
            if in_window >= max_iterations:
                truncated = True
                break
            in_window += 1
            if not definition.is_exception_date(candidate):
                occurrences.append(_make_occurrence(definition, candidate))

        walked += 1
        following = next_occurrence(candidate, rule, anchor_day)
        if following <= candidate:
            raise RuntimeError(
                f"Recurrence of event {definition.id} did not advance past {candidate.isoformat()}"
            )
        candidate = following

    if truncated:
        logger.warning(
            "Expansion of event %s truncated after %d candidates (window %s - %s)",
            definition.id, max_iterations, window_start.isoformat(), window_end.isoformat()
        )
        return ExpansionResult(tuple(occurrences), (definition.id,))

    return ExpansionResult(tuple(occurrences))


def _make_occurrence(definition: EventDefinition, start_time: datetime) -> Occurrence:
    return Occurrence(
        definition=definition,
        start_time=start_time,
        end_time=start_time + definition.duration,
    )
