"""
Service layer for event calendar business logic.

Services orchestrate the remote event store and the expansion engine. The
store is injected (``store=``) or built from settings; expansion itself is
pure and lives in ``recurrence``.

Completion is tracked per series: marking any occurrence of a recurring
event completed marks the definition, and therefore every occurrence.
"""

import dataclasses
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from .models import (
    ChallengeReference,
    EventDefinition,
    ExerciseReference,
    ExpansionResult,
    MoodEntry,
    RecipeReference,
    RecurrenceRule,
    RitualReference,
)
from .recurrence import expand, max_expansion_iterations, resolve_window
from .serializers import exceptions_to_cms, to_cms_changes, to_cms_document
from .store import default_query, get_event_store
from .types import (
    ACTIVITY_EVENT_TYPES,
    ACTIVITY_SOURCES,
    CHALLENGE_COMPLETION_SOURCE,
    DEFAULT_UPCOMING_DAYS,
    DEFAULT_UPCOMING_LIMIT,
    MOOD_COLORS,
    MOOD_LABELS,
    REFERENCE_EVENT_DEFAULTS,
    RITUAL_COMPLETION_SOURCE,
    EventCategory,
    EventColor,
    EventCreateData,
    EventPriority,
    EventType,
    EventUpdateData,
)


logger = logging.getLogger(__name__)


def list_occurrences(
    user_id: str,
    window_start,
    window_end,
    store=None,
    max_iterations: Optional[int] = None
) -> ExpansionResult:
    """
    Get a user's occurrences within an inclusive window.

    Args:
        user_id: Owner of the events
        window_start: Range start (datetime, or date for the whole day)
        window_end: Range end (datetime, or date for the whole day)
        store: Event store (defaults to the configured one)
        max_iterations: Per-definition expansion ceiling

    Returns:
        ExpansionResult ordered by start time, flagged when any definition's
        expansion was truncated

    Raises:
        InvalidWindowError: If window_start is after window_end
        FetchError: If the definitions could not be fetched
    """
    window_start, window_end = resolve_window(
        window_start, window_end, timezone.get_current_timezone()
    )
    store = store or get_event_store()
    if max_iterations is None:
        max_iterations = max_expansion_iterations()

    query = default_query().for_user(user_id).in_window(window_start, window_end)
    definitions = store.find(query)

    result = ExpansionResult.merge(
        expand(definition, window_start, window_end, max_iterations)
        for definition in definitions
    )
    if result.truncated:
        logger.warning(
            "Occurrences for user %s truncated for event(s) %s",
            user_id, ', '.join(result.truncated_definitions)
        )
    return result


def get_upcoming_occurrences(
    user_id: str,
    limit: int = DEFAULT_UPCOMING_LIMIT,
    store=None,
    now: Optional[datetime] = None
) -> ExpansionResult:
    """
    Get the next uncompleted occurrences for a user.

    Args:
        user_id: Owner of the events
        limit: Maximum number of occurrences returned
        store: Event store (defaults to the configured one)
        now: Reference instant (defaults to the current time)

    Returns:
        ExpansionResult with up to ``limit`` occurrences starting from now,
        keeping the truncation flag of the underlying expansion
    """
    now = now or timezone.now()
    days_ahead = getattr(settings, 'EVENTS_UPCOMING_DAYS', DEFAULT_UPCOMING_DAYS)
    result = list_occurrences(user_id, now, now + timedelta(days=days_ahead), store=store)

    upcoming = [
        occurrence for occurrence in result
        if occurrence.start_time >= now and not occurrence.is_completed
    ]
    return ExpansionResult(tuple(upcoming[:limit]), result.truncated_definitions)


def list_events(
    user_id: str,
    category: Optional[str] = None,
    pending: bool = False,
    store=None
) -> List[EventDefinition]:
    """
    Get a user's event definitions (not expanded).

    Args:
        user_id: Owner of the events
        category: Optional category filter
        pending: Only definitions not yet completed
        store: Event store (defaults to the configured one)
    """
    store = store or get_event_store()
    query = default_query().for_user(user_id)
    if category:
        query = query.with_category(category)
    if pending:
        query = query.pending()
    return store.find(query)


def _events_starting_between(user_id, window_start, window_end, store):
    store = store or get_event_store()
    query = default_query().for_user(user_id)
    if window_start is not None and window_end is not None:
        window_start, window_end = resolve_window(
            window_start, window_end, timezone.get_current_timezone()
        )
        query = query.starting_between(window_start, window_end)
    return store.find(query)


def get_mood_events(user_id: str, window_start=None, window_end=None, store=None) -> List[EventDefinition]:
    """
    Get a user's mood check-ins, optionally only those starting in a window.
    """
    events = _events_starting_between(user_id, window_start, window_end, store)
    return [event for event in events if event.event_type == EventType.MOOD]


def get_activity_events(user_id: str, window_start=None, window_end=None, store=None) -> List[EventDefinition]:
    """
    Get a user's recorded wellness activity.

    Activity is a mood, ritual or challenge event written by the mood tracker
    or by a completion recorder (see ``record_completed_ritual``), as opposed
    to events the user scheduled on the calendar.
    """
    events = _events_starting_between(user_id, window_start, window_end, store)
    return [
        event for event in events
        if event.event_type in ACTIVITY_EVENT_TYPES and event.metadata.source in ACTIVITY_SOURCES
    ]


def get_event(event_id: str, store=None) -> EventDefinition:
    store = store or get_event_store()
    return store.get(event_id)


def create_event(data: EventCreateData, store=None) -> EventDefinition:
    """
    Create an event definition.

    Args:
        data: EventCreateData with a validated recurrence rule and payload

    Returns:
        The stored EventDefinition
    """
    store = store or get_event_store()
    definition = store.create(to_cms_document(data))
    logger.info("Created %s event %s for user %s", definition.event_type, definition.id, data.user_id)
    return definition


def _create_reference_event(
    reference,
    user_id: str,
    start_time: datetime,
    recurrence: Optional[RecurrenceRule],
    location: Optional[str],
    notes: str,
    store
) -> EventDefinition:
    defaults = REFERENCE_EVENT_DEFAULTS[reference.event_type]
    data = EventCreateData(
        user_id=user_id,
        title=defaults['title'].format(reference.title),
        description=defaults['description'].format(reference.title),
        start_time=start_time,
        recurrence=recurrence,
        payload=reference,
        category=defaults['category'],
        priority=EventPriority.MEDIUM,
        color=defaults['color'],
        location=location or defaults['location'],
        notes=notes,
    )
    return create_event(data, store=store)


def create_recipe_event(user_id, recipe_id, recipe_title, start_time, recurrence=None,
                        location=None, notes='', store=None) -> EventDefinition:
    """Schedule cooking a recipe."""
    return _create_reference_event(
        RecipeReference(id=recipe_id, title=recipe_title),
        user_id, start_time, recurrence, location, notes, store
    )


def create_exercise_event(user_id, exercise_id, exercise_name, start_time, recurrence=None,
                          location=None, notes='', store=None) -> EventDefinition:
    """Schedule a workout."""
    return _create_reference_event(
        ExerciseReference(id=exercise_id, title=exercise_name),
        user_id, start_time, recurrence, location, notes, store
    )


def create_challenge_event(user_id, challenge_id, challenge_title, start_time, recurrence=None,
                           location=None, notes='', store=None) -> EventDefinition:
    """Schedule a mini challenge."""
    return _create_reference_event(
        ChallengeReference(id=challenge_id, title=challenge_title),
        user_id, start_time, recurrence, location, notes, store
    )


def create_ritual_event(user_id, ritual_id, ritual_title, start_time, recurrence=None,
                        location=None, notes='', store=None) -> EventDefinition:
    """Schedule a ritual."""
    return _create_reference_event(
        RitualReference(id=ritual_id, title=ritual_title),
        user_id, start_time, recurrence, location, notes, store
    )


def create_mood_event(
    user_id: str,
    mood: str,
    intensity: Optional[int] = None,
    triggers: str = '',
    notes: str = '',
    store=None,
    now: Optional[datetime] = None
) -> EventDefinition:
    """
    Record a mood check-in as a single event at the current time.

    Raises:
        ValidationError: If the mood or intensity is invalid
    """
    entry = MoodEntry(mood=mood, intensity=intensity, triggers=triggers)
    data = EventCreateData(
        user_id=user_id,
        title=f'Estado emocional: {MOOD_LABELS[mood]}',
        description=f'Intensidad: {intensity}/10' if intensity else '',
        start_time=now or timezone.now(),
        recurrence=RecurrenceRule.once(),
        payload=entry,
        category=EventCategory.SELFCARE,
        priority=EventPriority.LOW,
        color=MOOD_COLORS[mood],
        notes=notes,
    )
    return create_event(data, store=store)


def _record_completion(data: EventCreateData, store) -> EventDefinition:
    store = store or get_event_store()
    definition = create_event(data, store=store)
    return set_completed(definition.id, store=store)


def record_completed_ritual(
    user_id: str,
    ritual_id: str,
    ritual_title: str,
    duration_minutes: Optional[int] = None,
    notes: str = '',
    store=None,
    now: Optional[datetime] = None
) -> EventDefinition:
    """
    Record a ritual the user just finished, stored already completed.
    """
    if duration_minutes:
        description = f'Dedicaste {duration_minutes} minutos a tu bienestar realizando este ritual'
    else:
        description = f'Completaste el ritual: {ritual_title}'

    data = EventCreateData(
        user_id=user_id,
        title=f'Ritual completado: {ritual_title}',
        description=description,
        start_time=now or timezone.now(),
        recurrence=RecurrenceRule.once(),
        payload=RitualReference(id=ritual_id, title=ritual_title),
        category=EventCategory.SELFCARE,
        priority=EventPriority.LOW,
        color=EventColor.PURPLE,
        notes=notes,
        source=RITUAL_COMPLETION_SOURCE,
    )
    return _record_completion(data, store)


def record_completed_challenge(
    user_id: str,
    challenge_id: str,
    challenge_title: str,
    duration_minutes: Optional[int] = None,
    notes: str = '',
    store=None,
    now: Optional[datetime] = None
) -> EventDefinition:
    """
    Record a mini challenge the user just finished, stored already completed.
    """
    if duration_minutes:
        description = f'Dedicaste {duration_minutes} minutos completando este reto'
    else:
        description = f'Completaste el mini reto: {challenge_title}'

    data = EventCreateData(
        user_id=user_id,
        title=f'Mini reto completado: {challenge_title}',
        description=description,
        start_time=now or timezone.now(),
        recurrence=RecurrenceRule.once(),
        payload=ChallengeReference(id=challenge_id, title=challenge_title),
        category=EventCategory.HEALTH,
        priority=EventPriority.LOW,
        color=EventColor.BLUE,
        notes=notes,
        source=CHALLENGE_COMPLETION_SOURCE,
    )
    return _record_completion(data, store)


def _keep_times_ordered(definition: EventDefinition, update_data: EventUpdateData) -> EventUpdateData:
    """
    Reconcile a time change with the stored start and end.

    Moving only the start keeps the stored duration by moving the end along.

    Raises:
        ValidationError: If the resulting end would precede the start
    """
    start_time = update_data.start_time or definition.start_time
    end_time = update_data.end_time

    if end_time is None and update_data.start_time is not None and definition.end_time is not None:
        end_time = update_data.start_time + (definition.end_time - definition.start_time)
        update_data = dataclasses.replace(update_data, end_time=end_time)

    if end_time is None:
        end_time = definition.end_time

    if end_time is not None and end_time < start_time:
        raise ValidationError({'endTime': 'End time must not be before start time.'})

    return update_data


def update_event(event_id: str, update_data: EventUpdateData, store=None) -> EventDefinition:
    """
    Update an event definition.

    A new recurrence rule replaces the stored one as a whole.

    Args:
        event_id: Definition to update
        update_data: EventUpdateData with fields to update

    Returns:
        Updated EventDefinition

    Raises:
        ValidationError: If the new times would end before they start
    """
    store = store or get_event_store()
    if update_data.start_time is not None or update_data.end_time is not None:
        update_data = _keep_times_ordered(store.get(event_id), update_data)

    changes = to_cms_changes(update_data)
    if not changes:
        return store.get(event_id)
    return store.update(event_id, changes)


def delete_event(event_id: str, store=None) -> None:
    store = store or get_event_store()
    store.delete(event_id)
    logger.info("Deleted event %s", event_id)


def set_completed(event_id: str, is_completed: bool = True, store=None) -> EventDefinition:
    """
    Mark an event definition (the whole series) completed or pending.

    Args:
        event_id: Definition to update
        is_completed: New completion state

    Returns:
        Updated EventDefinition
    """
    return update_event(event_id, EventUpdateData(is_completed=is_completed), store=store)


def add_exception(event_id: str, exception_date: date, store=None) -> EventDefinition:
    """
    Suppress the occurrence of an event on a calendar date.

    Args:
        event_id: Definition to update
        exception_date: Calendar date to skip

    Returns:
        Updated EventDefinition (unchanged if the date was already excluded)

    Raises:
        ValidationError: If the event does not recur
    """
    store = store or get_event_store()
    definition = store.get(event_id)

    if not definition.is_recurring:
        raise ValidationError({'date': 'Exceptions only apply to recurring events.'})

    if exception_date in definition.exceptions:
        return definition

    exceptions = definition.exceptions | {exception_date}
    return store.update(event_id, {'exceptions': exceptions_to_cms(exceptions)})
