"""
Domain models for the event calendar.

Event definitions live in the remote content API, so nothing here is backed
by the ORM. Models are immutable snapshots of the stored records:
- RecurrenceRule describes how a definition repeats
- EventDefinition is one stored event plus its tagged domain payload
- Occurrence is one concrete instance derived by expansion (never persisted)
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone as dt_timezone
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, Iterator, Optional, Tuple, Union

from django.core.exceptions import ValidationError

from .exceptions import TruncatedExpansionError
from .types import (
    DEFAULT_EVENT_DURATION,
    DEFAULT_EVENT_SOURCE,
    DEFAULT_TIMEZONE,
    EventCategory,
    EventColor,
    EventPriority,
    EventType,
    MoodType,
    RecurrenceType,
)


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Repetition policy of an event definition.

    Weekday ordinals run from 0 (Sunday) to 6 (Saturday). A rule of type
    ``none`` ignores every other field, so they are not validated.
    """

    type: str = RecurrenceType.NONE
    interval: int = 1
    days_of_week: FrozenSet[int] = frozenset()
    day_of_month: Optional[int] = None
    until: Optional[datetime] = None
    count: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'days_of_week', frozenset(self.days_of_week or ()))
        self.clean()
        object.__setattr__(self, 'type', RecurrenceType(self.type))

    @classmethod
    def once(cls) -> 'RecurrenceRule':
        return cls(type=RecurrenceType.NONE)

    @property
    def is_recurring(self) -> bool:
        return self.type != RecurrenceType.NONE

    @property
    def sorted_days_of_week(self) -> Tuple[int, ...]:
        return tuple(sorted(self.days_of_week))

    def clean(self):
        """Validate rule data, naming every offending field."""
        if self.type not in RecurrenceType.values:
            raise ValidationError({'type': f'Unknown recurrence type "{self.type}".'})

        if self.type == RecurrenceType.NONE:
            return

        errors = {}
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            errors['interval'] = 'Interval must be a positive integer.'

        if any(not 0 <= day <= 6 for day in self.days_of_week):
            errors['days_of_week'] = 'Weekdays must be between 0 (Sunday) and 6 (Saturday).'
        elif self.type == RecurrenceType.CUSTOM and not self.days_of_week:
            errors['days_of_week'] = 'Custom recurrence requires at least one weekday.'

        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            errors['day_of_month'] = 'Day of month must be between 1 and 31.'

        if self.count is not None and self.count <= 0:
            errors['count'] = 'Count must be positive.'

        if errors:
            raise ValidationError(errors)


@dataclass(frozen=True)
class ContentReference:
    """Reference to a CMS catalog entry attached to an event."""

    event_type: ClassVar[str]

    id: str
    title: str = ''
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RecipeReference(ContentReference):
    event_type: ClassVar[str] = EventType.RECIPE


@dataclass(frozen=True)
class ExerciseReference(ContentReference):
    event_type: ClassVar[str] = EventType.EXERCISE


@dataclass(frozen=True)
class ChallengeReference(ContentReference):
    event_type: ClassVar[str] = EventType.CHALLENGE


@dataclass(frozen=True)
class RitualReference(ContentReference):
    event_type: ClassVar[str] = EventType.RITUAL


@dataclass(frozen=True)
class MoodEntry:
    """Mood check-in recorded as a calendar event."""

    event_type: ClassVar[str] = EventType.MOOD

    mood: str
    intensity: Optional[int] = None
    triggers: str = ''

    def __post_init__(self):
        errors = {}
        if self.mood not in MoodType.values:
            errors['mood'] = f'Unknown mood "{self.mood}".'
        if self.intensity is not None and not 1 <= self.intensity <= 10:
            errors['intensity'] = 'Intensity must be between 1 and 10.'
        if errors:
            raise ValidationError(errors)


EventPayload = Union[RecipeReference, ExerciseReference, ChallengeReference, RitualReference, MoodEntry]

PAYLOAD_CLASSES = {
    cls.event_type: cls
    for cls in (RecipeReference, ExerciseReference, ChallengeReference, RitualReference, MoodEntry)
}


@dataclass(frozen=True)
class Reminder:
    enabled: bool = False
    minutes_before: Optional[int] = None


@dataclass(frozen=True)
class EventMetadata:
    """Opaque provenance data; the timezone is carried, never interpreted."""

    source: str = DEFAULT_EVENT_SOURCE
    timezone: str = DEFAULT_TIMEZONE


@dataclass(frozen=True)
class EventDefinition:
    """
    One stored event, possibly recurring.

    The event type is derived from the payload variant: no payload means a
    personal event, otherwise the payload class decides. Expansion only ever
    reads a definition.
    """

    id: str
    user_id: str
    title: str
    start_time: datetime
    end_time: Optional[datetime] = None
    all_day: bool = False
    recurrence: RecurrenceRule = field(default_factory=RecurrenceRule)
    exceptions: FrozenSet[date] = frozenset()
    payload: Optional[EventPayload] = None
    description: str = ''
    category: str = EventCategory.PERSONAL
    priority: str = EventPriority.MEDIUM
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    location: str = ''
    reminder: Reminder = field(default_factory=Reminder)
    tags: Tuple[str, ...] = ()
    notes: str = ''
    color: str = EventColor.PURPLE
    metadata: EventMetadata = field(default_factory=EventMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, 'exceptions', frozenset(_as_date(d) for d in self.exceptions))
        object.__setattr__(self, 'tags', tuple(self.tags))
        self.clean()

    def __str__(self):
        return f"{self.title} - {self.start_time.strftime('%Y-%m-%d %H:%M')} [{self.recurrence.type}]"

    @property
    def event_type(self) -> str:
        if self.payload is None:
            return EventType.PERSONAL
        return self.payload.event_type

    @property
    def is_recurring(self) -> bool:
        return self.recurrence.is_recurring

    @property
    def duration(self):
        """Length of each occurrence; one hour when no end time is stored."""
        if self.end_time is None:
            return DEFAULT_EVENT_DURATION
        return self.end_time - self.start_time

    def is_exception_date(self, moment: datetime) -> bool:
        return moment.date() in self.exceptions

    def clean(self):
        if self.payload is not None and type(self.payload) not in PAYLOAD_CLASSES.values():
            raise ValidationError({'payload': f'Unsupported event payload {type(self.payload).__name__}.'})

        if self.end_time is not None and self.end_time < self.start_time:
            raise ValidationError({'end_time': 'End time must not be before start time.'})


def make_occurrence_id(definition_id: str, start_time: datetime) -> str:
    """Synthetic identifier unique per (definition, start instant)."""
    if start_time.tzinfo is not None:
        start_time = start_time.astimezone(dt_timezone.utc)
    return f"{definition_id}_{start_time.isoformat()}"


@dataclass(frozen=True)
class Occurrence:
    """
    One concrete instance of an event definition.

    Completion state and descriptive fields come from the definition; an
    occurrence cannot be completed or deleted on its own.
    """

    definition: EventDefinition
    start_time: datetime
    end_time: datetime

    def __str__(self):
        return f"{self.title} - {self.start_time.strftime('%Y-%m-%d %H:%M')}"

    @property
    def id(self) -> str:
        return make_occurrence_id(self.definition.id, self.start_time)

    @property
    def definition_id(self) -> str:
        return self.definition.id

    @property
    def title(self) -> str:
        return self.definition.title

    @property
    def event_type(self) -> str:
        return self.definition.event_type

    @property
    def is_completed(self) -> bool:
        return self.definition.is_completed

    @property
    def is_recurring(self) -> bool:
        return self.definition.is_recurring


@dataclass(frozen=True)
class ExpansionResult:
    """
    Ordered occurrences produced by an expansion.

    ``truncated_definitions`` lists the definitions whose expansion stopped
    at the iteration ceiling; their occurrences are correct but incomplete.
    """

    occurrences: Tuple[Occurrence, ...] = ()
    truncated_definitions: Tuple[str, ...] = ()

    def __iter__(self) -> Iterator[Occurrence]:
        return iter(self.occurrences)

    def __len__(self):
        return len(self.occurrences)

    def __getitem__(self, index):
        return self.occurrences[index]

    @property
    def truncated(self) -> bool:
        return bool(self.truncated_definitions)

    def raise_for_truncation(self) -> None:
        """Raise TruncatedExpansionError if any expansion hit the ceiling."""
        if self.truncated:
            raise TruncatedExpansionError(self)

    @classmethod
    def merge(cls, results: Iterable['ExpansionResult']) -> 'ExpansionResult':
        occurrences = []
        truncated = []
        for result in results:
            occurrences.extend(result.occurrences)
            truncated.extend(result.truncated_definitions)
        occurrences.sort(key=lambda occ: (occ.start_time, occ.definition_id))
        return cls(tuple(occurrences), tuple(truncated))


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
