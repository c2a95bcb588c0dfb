"""
Data types and constants for the event calendar.

This module contains:
- Choice enumerations shared by models, serializers and the CMS client
- DTOs (Data Transfer Objects) for service layer operations
- Constants used across the application
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, List, Optional

from django.db import models

if TYPE_CHECKING:
    from .models import EventPayload, RecurrenceRule


DEFAULT_EVENT_DURATION = timedelta(hours=1)
DEFAULT_TIMEZONE = 'America/Mexico_City'
DEFAULT_EVENT_SOURCE = 'mood-tracker'
DEFAULT_UPCOMING_DAYS = 30
DEFAULT_UPCOMING_LIMIT = 10

# Upper bound on candidates walked for one definition in one expansion.
MAX_EXPANSION_ITERATIONS = 365


class RecurrenceType(models.TextChoices):
    NONE = 'none', 'Does not repeat'
    DAILY = 'daily', 'Daily'
    WEEKLY = 'weekly', 'Weekly'
    MONTHLY = 'monthly', 'Monthly'
    CUSTOM = 'custom', 'Custom days of week'


class EventType(models.TextChoices):
    PERSONAL = 'personal', 'Personal'
    RECIPE = 'recipe', 'Recipe'
    EXERCISE = 'exercise', 'Exercise'
    CHALLENGE = 'challenge', 'Challenge'
    RITUAL = 'ritual', 'Ritual'
    MOOD = 'mood', 'Mood'


class EventCategory(models.TextChoices):
    HEALTH = 'health', 'Health'
    EXERCISE = 'exercise', 'Exercise'
    NUTRITION = 'nutrition', 'Nutrition'
    MEDICAL = 'medical', 'Medical'
    SELFCARE = 'selfcare', 'Self-care'
    WORK = 'work', 'Work'
    PERSONAL = 'personal', 'Personal'
    FAMILY = 'family', 'Family'
    OTHER = 'other', 'Other'


class EventPriority(models.TextChoices):
    LOW = 'low', 'Low'
    MEDIUM = 'medium', 'Medium'
    HIGH = 'high', 'High'
    URGENT = 'urgent', 'Urgent'


class EventColor(models.TextChoices):
    PURPLE = 'purple', 'Purple'
    PINK = 'pink', 'Pink'
    BLUE = 'blue', 'Blue'
    GREEN = 'green', 'Green'
    ORANGE = 'orange', 'Orange'
    RED = 'red', 'Red'
    YELLOW = 'yellow', 'Yellow'
    GRAY = 'gray', 'Gray'


class MoodType(models.TextChoices):
    RADIANT = 'radiante', 'Radiant'
    CALM = 'tranquila', 'Calm'
    REFLECTIVE = 'reflexiva', 'Reflective'
    TIRED = 'cansada', 'Tired'
    SENSITIVE = 'sensible', 'Sensitive'
    NEUTRAL = 'neutral', 'Neutral'


MOOD_LABELS = {
    MoodType.RADIANT: 'Radiante',
    MoodType.CALM: 'Tranquila',
    MoodType.REFLECTIVE: 'Reflexiva',
    MoodType.TIRED: 'Cansada',
    MoodType.SENSITIVE: 'Sensible',
    MoodType.NEUTRAL: 'Neutral',
}

MOOD_COLORS = {
    MoodType.RADIANT: EventColor.YELLOW,
    MoodType.CALM: EventColor.GREEN,
    MoodType.REFLECTIVE: EventColor.PURPLE,
    MoodType.TIRED: EventColor.ORANGE,
    MoodType.SENSITIVE: EventColor.PINK,
    MoodType.NEUTRAL: EventColor.GRAY,
}

# Defaults for events scheduled from a catalog entry; '{}' takes the entry title.
REFERENCE_EVENT_DEFAULTS = {
    EventType.RECIPE: {
        'title': 'Cocinar: {}',
        'description': 'Preparar la receta: {}',
        'category': EventCategory.NUTRITION,
        'color': EventColor.ORANGE,
        'location': 'Cocina',
    },
    EventType.EXERCISE: {
        'title': 'Entrenar: {}',
        'description': 'Realizar ejercicio: {}',
        'category': EventCategory.EXERCISE,
        'color': EventColor.BLUE,
        'location': 'Gimnasio',
    },
    EventType.CHALLENGE: {
        'title': 'Mini Reto: {}',
        'description': 'Completar el mini reto: {}',
        'category': EventCategory.HEALTH,
        'color': EventColor.PURPLE,
        'location': 'Casa',
    },
    EventType.RITUAL: {
        'title': 'Ritual: {}',
        'description': 'Completar el ritual: {}',
        'category': EventCategory.HEALTH,
        'color': EventColor.PURPLE,
        'location': 'Casa',
    },
}

RITUAL_COMPLETION_SOURCE = 'ritual-completion'
CHALLENGE_COMPLETION_SOURCE = 'challenge-completion'

ACTIVITY_EVENT_TYPES = (EventType.MOOD, EventType.RITUAL, EventType.CHALLENGE)
ACTIVITY_SOURCES = (DEFAULT_EVENT_SOURCE, RITUAL_COMPLETION_SOURCE, CHALLENGE_COMPLETION_SOURCE)


WEEKDAY_CHOICES = [
    (0, 'Sunday'),
    (1, 'Monday'),
    (2, 'Tuesday'),
    (3, 'Wednesday'),
    (4, 'Thursday'),
    (5, 'Friday'),
    (6, 'Saturday'),
]


@dataclass
class EventCreateData:
    """DTO for event creation operations."""
    user_id: str
    title: str
    start_time: datetime
    end_time: Optional[datetime] = None
    all_day: bool = False
    recurrence: Optional['RecurrenceRule'] = None
    payload: Optional['EventPayload'] = None
    description: str = ''
    category: str = EventCategory.PERSONAL
    priority: str = EventPriority.MEDIUM
    location: str = ''
    reminder_enabled: bool = False
    reminder_minutes_before: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    notes: str = ''
    color: str = EventColor.PURPLE
    source: str = DEFAULT_EVENT_SOURCE
    timezone: str = DEFAULT_TIMEZONE


@dataclass
class EventUpdateData:
    """DTO for event update operations."""
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    all_day: Optional[bool] = None
    recurrence: Optional['RecurrenceRule'] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    is_completed: Optional[bool] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    color: Optional[str] = None
    tags: Optional[List[str]] = None
