"""
Serializers for the event calendar.

Input serializers validate into domain objects (``validate`` returns an
EventDefinition, RecurrenceRule or DTO instead of a dict). The same input
serializers read records coming back from the content API, whose array
fields arrive as rows such as ``[{"day": "1"}]``.
"""

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from rest_framework import serializers

from .models import (
    PAYLOAD_CLASSES,
    ContentReference,
    EventDefinition,
    EventMetadata,
    MoodEntry,
    RecurrenceRule,
    Reminder,
)
from .exceptions import InvalidWindowError
from .recurrence import max_expansion_iterations, resolve_window
from .types import (
    DEFAULT_EVENT_SOURCE,
    DEFAULT_TIMEZONE,
    DEFAULT_UPCOMING_LIMIT,
    EventCategory,
    EventColor,
    EventCreateData,
    EventPriority,
    EventType,
    EventUpdateData,
    MoodType,
    RecurrenceType,
)


PAYLOAD_FIELDS = {
    EventType.RECIPE: 'recipeReference',
    EventType.EXERCISE: 'exerciseReference',
    EventType.CHALLENGE: 'challengeReference',
    EventType.RITUAL: 'ritualReference',
    EventType.MOOD: 'moodData',
}

API_FIELD_NAMES = {
    'start_time': 'startTime',
    'end_time': 'endTime',
    'days_of_week': 'daysOfWeek',
    'day_of_month': 'dayOfMonth',
    'payload': 'eventType',
}


def _construct(factory, **kwargs):
    """Build a domain object, reporting its validation errors under API names."""
    try:
        return factory(**kwargs)
    except DjangoValidationError as exc:
        raise serializers.ValidationError({
            API_FIELD_NAMES.get(name, name): messages
            for name, messages in exc.message_dict.items()
        })


class UnwrappingListField(serializers.ListField):
    """List field that also accepts content API rows like ``[{"tag": "x"}]``."""

    def __init__(self, key, **kwargs):
        self.key = key
        kwargs.setdefault('required', False)
        kwargs.setdefault('default', list)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        if isinstance(data, list):
            data = [item.get(self.key) if isinstance(item, dict) else item for item in data]
        return super().to_internal_value(data)


class CalendarDateField(serializers.DateField):
    """Date field that keeps only the calendar date of a timestamp string."""

    def to_internal_value(self, value):
        if isinstance(value, str) and len(value) > 10 and value[10] in 'T ':
            value = value[:10]
        return super().to_internal_value(value)


class WindowBoundField(serializers.DateTimeField):
    """Accepts a datetime, or a plain date meaning the whole day."""

    def to_internal_value(self, value):
        if isinstance(value, str) and len(value) == 10:
            return serializers.DateField().to_internal_value(value)
        return super().to_internal_value(value)


class ContentReferenceField(serializers.Field):
    """A catalog reference given either as a bare id or as a CMS object."""

    TITLE_KEYS = ('title', 'titulo', 'nombre', 'name')

    default_error_messages = {
        'invalid': 'Expected a reference id or an object with an "id".',
    }

    def to_internal_value(self, data):
        if isinstance(data, (str, int)) and not isinstance(data, bool):
            return {'id': str(data)}

        if isinstance(data, dict) and data.get('id') is not None:
            attributes = {key: value for key, value in data.items() if key != 'id'}
            title = next((attributes[key] for key in self.TITLE_KEYS if attributes.get(key)), '')
            return {'id': str(data['id']), 'title': title, 'attributes': attributes}

        self.fail('invalid')

    def to_representation(self, value):
        return {'id': value.id, 'title': value.title, **value.attributes}


class RecurrenceSerializer(serializers.Serializer):
    """Validates recurrence input into a RecurrenceRule."""

    type = serializers.ChoiceField(choices=RecurrenceType.choices, default=RecurrenceType.NONE)
    interval = serializers.IntegerField(required=False, allow_null=True)
    daysOfWeek = UnwrappingListField(key='day', child=serializers.IntegerField())
    dayOfMonth = serializers.IntegerField(required=False, allow_null=True)
    until = serializers.DateTimeField(required=False, allow_null=True)
    count = serializers.IntegerField(required=False, allow_null=True)

    def validate(self, data):
        interval = data.get('interval')
        return _construct(
            RecurrenceRule,
            type=data.get('type', RecurrenceType.NONE),
            interval=1 if interval is None else interval,
            days_of_week=data.get('daysOfWeek') or (),
            day_of_month=data.get('dayOfMonth'),
            until=data.get('until'),
            count=data.get('count'),
        )


class MoodDataSerializer(serializers.Serializer):
    mood = serializers.ChoiceField(choices=MoodType.choices)
    intensity = serializers.IntegerField(required=False, allow_null=True)
    triggers = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate(self, data):
        return _construct(
            MoodEntry,
            mood=data['mood'],
            intensity=data.get('intensity'),
            triggers=data.get('triggers') or '',
        )


class ReminderSerializer(serializers.Serializer):
    enabled = serializers.BooleanField(default=False)
    minutesBefore = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class MetadataSerializer(serializers.Serializer):
    source = serializers.CharField(required=False, allow_blank=True, default=DEFAULT_EVENT_SOURCE)
    timezone = serializers.CharField(required=False, allow_blank=True, default=DEFAULT_TIMEZONE)


def _optional_text(**kwargs):
    return serializers.CharField(required=False, allow_blank=True, allow_null=True, **kwargs)


class EventFieldsSerializer(serializers.Serializer):
    """Fields shared by stored definitions and creation input."""

    eventType = serializers.ChoiceField(choices=EventType.choices, default=EventType.PERSONAL)
    recipeReference = ContentReferenceField(required=False, allow_null=True)
    exerciseReference = ContentReferenceField(required=False, allow_null=True)
    challengeReference = ContentReferenceField(required=False, allow_null=True)
    ritualReference = ContentReferenceField(required=False, allow_null=True)
    moodData = MoodDataSerializer(required=False, allow_null=True)
    title = serializers.CharField(max_length=200)
    description = _optional_text()
    startTime = serializers.DateTimeField()
    endTime = serializers.DateTimeField(required=False, allow_null=True)
    allDay = serializers.BooleanField(default=False)
    recurrence = RecurrenceSerializer(required=False)
    category = serializers.ChoiceField(choices=EventCategory.choices, default=EventCategory.PERSONAL)
    priority = serializers.ChoiceField(choices=EventPriority.choices, default=EventPriority.MEDIUM)
    location = _optional_text()
    reminder = ReminderSerializer(required=False)
    tags = UnwrappingListField(key='tag', child=serializers.CharField())
    notes = _optional_text()
    color = serializers.ChoiceField(choices=EventColor.choices, default=EventColor.PURPLE)
    metadata = MetadataSerializer(required=False)

    def build_payload(self, data):
        """
        Resolve the tagged payload for the event type.

        Exactly the field matching ``eventType`` may be set (none for
        personal events); any other populated reference field is an error.
        """
        event_type = data['eventType']
        expected = PAYLOAD_FIELDS.get(event_type)

        stray = {
            name: f'Not allowed for {event_type} events.'
            for name in PAYLOAD_FIELDS.values()
            if name != expected and data.get(name)
        }
        if stray:
            raise serializers.ValidationError(stray)

        if expected is None:
            return None

        value = data.get(expected)
        if not value:
            raise serializers.ValidationError({expected: f'Required for {event_type} events.'})

        if isinstance(value, MoodEntry):
            return value
        return PAYLOAD_CLASSES[event_type](**value)

    def common_fields(self, data):
        """Keyword arguments shared by EventDefinition and EventCreateData."""
        return {
            'title': data['title'],
            'start_time': data['startTime'],
            'end_time': data.get('endTime'),
            'all_day': data.get('allDay', False),
            'recurrence': data.get('recurrence') or RecurrenceRule.once(),
            'payload': self.build_payload(data),
            'description': data.get('description') or '',
            'category': data.get('category', EventCategory.PERSONAL),
            'priority': data.get('priority', EventPriority.MEDIUM),
            'location': data.get('location') or '',
            'tags': data.get('tags') or [],
            'notes': data.get('notes') or '',
            'color': data.get('color', EventColor.PURPLE),
        }


class EventDefinitionSerializer(EventFieldsSerializer):
    """Validates a stored (or inline) event record into an EventDefinition."""

    id = serializers.CharField()
    userId = serializers.CharField(required=False, allow_blank=True, default='')
    exceptions = UnwrappingListField(key='date', child=CalendarDateField())
    isCompleted = serializers.BooleanField(default=False)
    completedAt = serializers.DateTimeField(required=False, allow_null=True)
    createdAt = serializers.DateTimeField(required=False, allow_null=True)
    updatedAt = serializers.DateTimeField(required=False, allow_null=True)

    def validate(self, data):
        reminder = data.get('reminder') or {}
        metadata = data.get('metadata') or {}
        fields = self.common_fields(data)
        fields['tags'] = tuple(fields['tags'])
        return _construct(
            EventDefinition,
            id=data['id'],
            user_id=data.get('userId', ''),
            exceptions=frozenset(data.get('exceptions') or ()),
            is_completed=data.get('isCompleted', False),
            completed_at=data.get('completedAt'),
            reminder=Reminder(
                enabled=reminder.get('enabled', False),
                minutes_before=reminder.get('minutesBefore'),
            ),
            metadata=EventMetadata(
                source=metadata.get('source') or DEFAULT_EVENT_SOURCE,
                timezone=metadata.get('timezone') or DEFAULT_TIMEZONE,
            ),
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
            **fields
        )


class EventCreateSerializer(EventFieldsSerializer):
    """Validates creation input into an EventCreateData DTO."""

    userId = serializers.CharField()

    def validate(self, data):
        fields = self.common_fields(data)
        if fields['end_time'] and fields['end_time'] < fields['start_time']:
            raise serializers.ValidationError({'endTime': 'End time must not be before start time.'})

        reminder = data.get('reminder') or {}
        metadata = data.get('metadata') or {}
        return EventCreateData(
            user_id=data['userId'],
            reminder_enabled=reminder.get('enabled', False),
            reminder_minutes_before=reminder.get('minutesBefore'),
            source=metadata.get('source') or DEFAULT_EVENT_SOURCE,
            timezone=metadata.get('timezone') or DEFAULT_TIMEZONE,
            **fields
        )


class EventUpdateSerializer(serializers.Serializer):
    """Validates a partial update into an EventUpdateData DTO."""

    title = serializers.CharField(max_length=200, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    startTime = serializers.DateTimeField(required=False)
    endTime = serializers.DateTimeField(required=False)
    allDay = serializers.BooleanField(required=False)
    recurrence = RecurrenceSerializer(required=False)
    category = serializers.ChoiceField(choices=EventCategory.choices, required=False)
    priority = serializers.ChoiceField(choices=EventPriority.choices, required=False)
    isCompleted = serializers.BooleanField(required=False)
    location = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    color = serializers.ChoiceField(choices=EventColor.choices, required=False)
    tags = serializers.ListField(child=serializers.CharField(), required=False)

    def validate(self, data):
        start_time = data.get('startTime')
        end_time = data.get('endTime')
        if start_time and end_time and end_time < start_time:
            raise serializers.ValidationError({'endTime': 'End time must not be before start time.'})

        return EventUpdateData(
            title=data.get('title'),
            description=data.get('description'),
            start_time=start_time,
            end_time=end_time,
            all_day=data.get('allDay'),
            recurrence=data.get('recurrence'),
            category=data.get('category'),
            priority=data.get('priority'),
            is_completed=data.get('isCompleted'),
            location=data.get('location'),
            notes=data.get('notes'),
            color=data.get('color'),
            tags=data.get('tags'),
        )


class RecurrenceReadSerializer(serializers.Serializer):
    """Serializer for displaying a RecurrenceRule (output)."""

    type = serializers.CharField()
    interval = serializers.IntegerField()
    daysOfWeek = serializers.ListField(source='sorted_days_of_week', child=serializers.IntegerField())
    dayOfMonth = serializers.IntegerField(source='day_of_month', allow_null=True)
    until = serializers.DateTimeField(allow_null=True)
    count = serializers.IntegerField(allow_null=True)


def _payload_representation(payload):
    if payload is None:
        return None
    if isinstance(payload, ContentReference):
        return ContentReferenceField().to_representation(payload)
    return {'mood': payload.mood, 'intensity': payload.intensity, 'triggers': payload.triggers}


class EventDefinitionReadSerializer(serializers.Serializer):
    """Serializer for displaying an EventDefinition (output)."""

    id = serializers.CharField()
    userId = serializers.CharField(source='user_id')
    eventType = serializers.CharField(source='event_type')
    title = serializers.CharField()
    description = serializers.CharField()
    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time', allow_null=True)
    allDay = serializers.BooleanField(source='all_day')
    recurrence = RecurrenceReadSerializer()
    exceptions = serializers.SerializerMethodField()
    category = serializers.CharField()
    priority = serializers.CharField()
    isCompleted = serializers.BooleanField(source='is_completed')
    completedAt = serializers.DateTimeField(source='completed_at', allow_null=True)
    location = serializers.CharField()
    reminder = serializers.SerializerMethodField()
    tags = serializers.ListField(child=serializers.CharField())
    notes = serializers.CharField()
    color = serializers.CharField()
    metadata = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source='created_at', allow_null=True)
    updatedAt = serializers.DateTimeField(source='updated_at', allow_null=True)

    def get_exceptions(self, obj):
        return [day.isoformat() for day in sorted(obj.exceptions)]

    def get_reminder(self, obj):
        return {'enabled': obj.reminder.enabled, 'minutesBefore': obj.reminder.minutes_before}

    def get_metadata(self, obj):
        return {'source': obj.metadata.source, 'timezone': obj.metadata.timezone}

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if instance.payload is not None:
            data[PAYLOAD_FIELDS[instance.event_type]] = _payload_representation(instance.payload)
        return data


class OccurrenceReadSerializer(serializers.Serializer):
    """Serializer for displaying an Occurrence (output)."""

    id = serializers.CharField()
    eventId = serializers.CharField(source='definition_id')
    eventType = serializers.CharField(source='event_type')
    title = serializers.CharField()
    description = serializers.CharField(source='definition.description')
    startTime = serializers.DateTimeField(source='start_time')
    endTime = serializers.DateTimeField(source='end_time')
    allDay = serializers.BooleanField(source='definition.all_day')
    category = serializers.CharField(source='definition.category')
    priority = serializers.CharField(source='definition.priority')
    color = serializers.CharField(source='definition.color')
    location = serializers.CharField(source='definition.location')
    isCompleted = serializers.BooleanField(source='is_completed')
    isRecurring = serializers.BooleanField(source='is_recurring')
    reference = serializers.SerializerMethodField()

    def get_reference(self, obj):
        return _payload_representation(obj.definition.payload)


def expansion_representation(result):
    """Response body for an ExpansionResult."""
    return {
        'occurrences': OccurrenceReadSerializer(result.occurrences, many=True).data,
        'truncated': result.truncated,
        'truncatedEvents': list(result.truncated_definitions),
    }


class WindowSerializer(serializers.Serializer):
    """Inclusive [start, end] window; plain dates cover whole days."""

    start = WindowBoundField()
    end = WindowBoundField()

    def validate(self, data):
        try:
            data['start'], data['end'] = resolve_window(
                data['start'], data['end'], timezone.get_current_timezone()
            )
        except InvalidWindowError:
            raise serializers.ValidationError("Start must not be after end.")
        return data


class DateRangeQuerySerializer(WindowSerializer):
    """Serializer for occurrence range query parameters."""

    userId = serializers.CharField()


class ExpandRequestSerializer(WindowSerializer):
    """Serializer for expanding an inline event definition."""

    event = EventDefinitionSerializer()
    maxIterations = serializers.IntegerField(required=False, min_value=1)

    def validate_maxIterations(self, value):
        ceiling = max_expansion_iterations()
        if value > ceiling:
            raise serializers.ValidationError(f"Must not exceed {ceiling}.")
        return value


class EventListQuerySerializer(serializers.Serializer):
    userId = serializers.CharField()
    category = serializers.ChoiceField(choices=EventCategory.choices, required=False)
    pending = serializers.BooleanField(default=False)


class UpcomingQuerySerializer(serializers.Serializer):
    userId = serializers.CharField()
    limit = serializers.IntegerField(min_value=1, max_value=100, default=DEFAULT_UPCOMING_LIMIT)


class CompletionSerializer(serializers.Serializer):
    isCompleted = serializers.BooleanField(default=True)


class ExceptionDateSerializer(serializers.Serializer):
    date = CalendarDateField()


def recurrence_to_cms(rule):
    """Content API representation of a RecurrenceRule."""
    return {
        'type': rule.type.value,
        'interval': rule.interval,
        'daysOfWeek': [{'day': str(day)} for day in rule.sorted_days_of_week],
        'dayOfMonth': rule.day_of_month,
        'until': rule.until.isoformat() if rule.until else None,
        'count': rule.count,
    }


def exceptions_to_cms(dates):
    return [{'date': day.isoformat()} for day in sorted(dates)]


def _event_type_value(payload):
    return EventType.PERSONAL.value if payload is None else str(payload.event_type)


def _payload_to_cms(payload):
    if isinstance(payload, MoodEntry):
        return {'mood': payload.mood, 'intensity': payload.intensity, 'triggers': payload.triggers}
    return payload.id


def to_cms_document(data):
    """Content API document for an EventCreateData."""
    rule = data.recurrence or RecurrenceRule.once()
    document = {
        'userId': data.user_id,
        'eventType': _event_type_value(data.payload),
        'title': data.title,
        'description': data.description,
        'startTime': data.start_time.isoformat(),
        'endTime': data.end_time.isoformat() if data.end_time else None,
        'allDay': data.all_day,
        'recurrence': recurrence_to_cms(rule),
        'exceptions': [],
        'category': data.category,
        'priority': data.priority,
        'isCompleted': False,
        'location': data.location,
        'reminder': {
            'enabled': data.reminder_enabled,
            'minutesBefore': (
                str(data.reminder_minutes_before)
                if data.reminder_minutes_before is not None else None
            ),
        },
        'tags': [{'tag': tag} for tag in data.tags],
        'notes': data.notes,
        'color': data.color,
        'metadata': {'source': data.source, 'timezone': data.timezone},
    }
    if data.payload is not None:
        document[PAYLOAD_FIELDS[data.payload.event_type]] = _payload_to_cms(data.payload)
    return document


def to_cms_changes(data):
    """Content API patch for an EventUpdateData; unset fields are left out."""
    simple_fields = {
        'title': data.title,
        'description': data.description,
        'allDay': data.all_day,
        'category': data.category,
        'priority': data.priority,
        'location': data.location,
        'notes': data.notes,
        'color': data.color,
    }
    changes = {name: value for name, value in simple_fields.items() if value is not None}

    if data.start_time is not None:
        changes['startTime'] = data.start_time.isoformat()
    if data.end_time is not None:
        changes['endTime'] = data.end_time.isoformat()
    if data.recurrence is not None:
        changes['recurrence'] = recurrence_to_cms(data.recurrence)
    if data.tags is not None:
        changes['tags'] = [{'tag': tag} for tag in data.tags]
    if data.is_completed is not None:
        changes['isCompleted'] = data.is_completed
        changes['completedAt'] = timezone.now().isoformat() if data.is_completed else None

    return changes
