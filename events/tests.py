"""
Tests for the event calendar.

Tests cover:
- RecurrenceRule and EventDefinition models and validation
- Next-occurrence calculation and window expansion
- Query building and the content API client
- Service layer (occurrence listing, completion, exceptions, typed
  factories, completion recorders, mood and activity listings)
- Error mapping in the API exception handler
- API endpoints (events, occurrences, inline expansion)
- Management commands
"""

import dataclasses
import json
from datetime import date, datetime, timedelta, timezone as dt_timezone
from io import StringIO
from unittest import mock
from zoneinfo import ZoneInfo

import requests
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings
from rest_framework import status
from rest_framework.test import APISimpleTestCase

from .exceptions import (
    EventNotFoundError,
    FetchError,
    InvalidWindowError,
    StoreError,
    TruncatedExpansionError,
    api_exception_handler,
)
from .models import (
    EventDefinition,
    EventMetadata,
    ExpansionResult,
    MoodEntry,
    Occurrence,
    RecipeReference,
    RecurrenceRule,
    RitualReference,
)
from .queries import EventQuery
from .recurrence import expand, next_occurrence, resolve_window, skip_to_window
from .serializers import EventDefinitionSerializer
from .store import CMSEventStore
from .types import EventType, EventUpdateData, RecurrenceType
from . import services


UTC = dt_timezone.utc


def at(year, month, day, hour=9, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


def make_definition(recurrence=None, **overrides):
    fields = {
        'id': 'evt-1',
        'user_id': 'user-1',
        'title': 'Morning walk',
        'start_time': at(2024, 1, 1),
        'recurrence': recurrence or RecurrenceRule.once(),
    }
    fields.update(overrides)
    return EventDefinition(**fields)


def start_dates(result):
    return [occurrence.start_time.date() for occurrence in result]


def cms_document(**overrides):
    """An events collection record as the content API returns it."""
    document = {
        'id': 'evt-1',
        'userId': 'user-1',
        'eventType': 'personal',
        'title': 'Morning walk',
        'description': None,
        'startTime': '2024-01-01T15:00:00.000Z',
        'endTime': '2024-01-01T15:30:00.000Z',
        'allDay': False,
        'recurrence': {
            'type': 'weekly',
            'interval': 1,
            'daysOfWeek': [],
            'dayOfMonth': None,
            'until': None,
            'count': None,
        },
        'exceptions': [],
        'category': 'health',
        'priority': 'medium',
        'isCompleted': False,
        'completedAt': None,
        'location': None,
        'reminder': {'enabled': True, 'minutesBefore': '15'},
        'tags': [{'tag': 'outdoors'}],
        'notes': None,
        'color': 'green',
        'metadata': {'source': 'mood-tracker', 'timezone': 'America/Mexico_City'},
        'createdAt': '2023-12-20T10:00:00.000Z',
        'updatedAt': '2023-12-20T10:00:00.000Z',
    }
    document.update(overrides)
    return document


class InMemoryEventStore:
    """Stand-in for the content API keeping definitions in a dict."""

    def __init__(self, definitions=(), fail=False):
        self.definitions = {definition.id: definition for definition in definitions}
        self.fail = fail
        self.queries = []
        self.created = []
        self.updates = []

    def find(self, query):
        self.queries.append(query)
        if self.fail:
            raise FetchError('content API unavailable')
        user_ids = [c['userId']['equals'] for c in query.conditions if 'userId' in c]
        return [d for d in self.definitions.values() if not user_ids or d.user_id in user_ids]

    def get(self, event_id):
        if event_id not in self.definitions:
            raise EventNotFoundError(event_id)
        return self.definitions[event_id]

    def create(self, document):
        self.created.append(document)
        serializer = EventDefinitionSerializer(data={**document, 'id': f'new-{len(self.created)}'})
        serializer.is_valid(raise_exception=True)
        definition = serializer.validated_data
        self.definitions[definition.id] = definition
        return definition

    def update(self, event_id, changes):
        self.updates.append((event_id, changes))
        definition = self.get(event_id)
        if 'exceptions' in changes:
            definition = dataclasses.replace(
                definition,
                exceptions=frozenset(date.fromisoformat(row['date']) for row in changes['exceptions'])
            )
        if 'isCompleted' in changes:
            definition = dataclasses.replace(definition, is_completed=changes['isCompleted'])
        times = {
            field: datetime.fromisoformat(changes[key])
            for key, field in (('startTime', 'start_time'), ('endTime', 'end_time'))
            if key in changes
        }
        if times:
            definition = dataclasses.replace(definition, **times)
        self.definitions[event_id] = definition
        return definition

    def delete(self, event_id):
        self.get(event_id)
        del self.definitions[event_id]


class RecurrenceRuleModelTests(SimpleTestCase):
    """Test RecurrenceRule validation."""

    def test_defaults_to_single_occurrence(self):
        """Test that a bare rule does not recur."""
        rule = RecurrenceRule()
        self.assertEqual(rule.type, RecurrenceType.NONE)
        self.assertFalse(rule.is_recurring)

    def test_zero_interval_rejected(self):
        """Test that interval 0 is an error, not coerced to 1."""
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type=RecurrenceType.DAILY, interval=0)
        self.assertIn('interval', ctx.exception.message_dict)

    def test_negative_interval_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type=RecurrenceType.WEEKLY, interval=-2)
        self.assertIn('interval', ctx.exception.message_dict)

    def test_custom_requires_weekdays(self):
        """Test that a custom rule without weekdays is rejected."""
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type=RecurrenceType.CUSTOM)
        self.assertIn('days_of_week', ctx.exception.message_dict)

    def test_weekday_out_of_range_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 7})
        self.assertIn('days_of_week', ctx.exception.message_dict)

    def test_non_positive_count_rejected(self):
        """Test that count must be positive when present."""
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type=RecurrenceType.DAILY, count=0)
        self.assertIn('count', ctx.exception.message_dict)

    def test_every_offending_field_is_named(self):
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type=RecurrenceType.CUSTOM, interval=0, count=-1, day_of_month=32)
        self.assertEqual(
            set(ctx.exception.message_dict),
            {'interval', 'days_of_week', 'count', 'day_of_month'}
        )

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            RecurrenceRule(type='yearly')
        self.assertIn('type', ctx.exception.message_dict)

    def test_none_rule_ignores_other_fields(self):
        """Test that a non-recurring rule does not validate unused fields."""
        rule = RecurrenceRule(type=RecurrenceType.NONE, interval=0, count=0)
        self.assertFalse(rule.is_recurring)

    def test_rule_is_immutable(self):
        rule = RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week=[5, 1, 3])
        self.assertEqual(rule.sorted_days_of_week, (1, 3, 5))
        with self.assertRaises(dataclasses.FrozenInstanceError):
            rule.interval = 2


class EventDefinitionModelTests(SimpleTestCase):
    """Test EventDefinition and its tagged payload."""

    def test_personal_event_has_no_payload(self):
        definition = make_definition()
        self.assertEqual(definition.event_type, EventType.PERSONAL)
        self.assertIsNone(definition.payload)

    def test_event_type_follows_payload(self):
        """Test that the event type is derived from the payload variant."""
        recipe = make_definition(payload=RecipeReference(id='rec-1', title='Avena'))
        mood = make_definition(payload=MoodEntry(mood='tranquila', intensity=6))

        self.assertEqual(recipe.event_type, EventType.RECIPE)
        self.assertEqual(mood.event_type, EventType.MOOD)

    def test_unsupported_payload_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            make_definition(payload={'id': 'rec-1'})
        self.assertIn('payload', ctx.exception.message_dict)

    def test_mood_intensity_validation(self):
        with self.assertRaises(ValidationError) as ctx:
            MoodEntry(mood='tranquila', intensity=11)
        self.assertIn('intensity', ctx.exception.message_dict)

    def test_default_duration_is_one_hour(self):
        """Test that a missing end time implies one hour."""
        self.assertEqual(make_definition().duration, timedelta(hours=1))
        self.assertEqual(
            make_definition(end_time=at(2024, 1, 1, 9, 45)).duration,
            timedelta(minutes=45)
        )

    def test_end_before_start_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            make_definition(end_time=at(2024, 1, 1, 8, 0))
        self.assertIn('end_time', ctx.exception.message_dict)

    def test_exceptions_normalized_to_dates(self):
        """Test that exception timestamps keep only their calendar date."""
        definition = make_definition(exceptions=[at(2024, 1, 15, 23, 0), date(2024, 1, 22)])
        self.assertEqual(definition.exceptions, frozenset({date(2024, 1, 15), date(2024, 1, 22)}))
        self.assertTrue(definition.is_exception_date(at(2024, 1, 15, 7, 0)))


class NextOccurrenceTests(SimpleTestCase):
    """Test next_occurrence for every recurrence type."""

    def test_daily_interval(self):
        rule = RecurrenceRule(type=RecurrenceType.DAILY, interval=2)
        self.assertEqual(next_occurrence(at(2024, 1, 1), rule), at(2024, 1, 3))

    def test_weekly_interval(self):
        rule = RecurrenceRule(type=RecurrenceType.WEEKLY, interval=2)
        self.assertEqual(next_occurrence(at(2024, 1, 1), rule), at(2024, 1, 15))

    def test_monthly_clamps_to_month_end(self):
        """Test that Jan 31 advances to Feb 29 rather than overflowing into March."""
        rule = RecurrenceRule(type=RecurrenceType.MONTHLY)
        self.assertEqual(next_occurrence(at(2024, 1, 31), rule), at(2024, 2, 29))

    def test_monthly_returns_to_anchor_day(self):
        rule = RecurrenceRule(type=RecurrenceType.MONTHLY)
        self.assertEqual(next_occurrence(at(2024, 2, 29), rule, anchor_day=31), at(2024, 3, 31))
        self.assertEqual(next_occurrence(at(2024, 2, 29), rule), at(2024, 3, 29))

    def test_monthly_day_of_month(self):
        rule = RecurrenceRule(type=RecurrenceType.MONTHLY, day_of_month=15)
        self.assertEqual(next_occurrence(at(2024, 1, 10), rule, anchor_day=10), at(2024, 2, 15))

    def test_custom_next_day_in_same_week(self):
        rule = RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 3, 5})
        self.assertEqual(next_occurrence(at(2024, 1, 1), rule), at(2024, 1, 3))

    def test_custom_wraps_to_following_week(self):
        """Test that Friday wraps to Monday of the week interval weeks later."""
        weekly = RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 5})
        fortnightly = RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 5}, interval=2)

        self.assertEqual(next_occurrence(at(2024, 1, 5), weekly), at(2024, 1, 8))
        self.assertEqual(next_occurrence(at(2024, 1, 5), fortnightly), at(2024, 1, 15))

    def test_custom_sunday_is_a_valid_target(self):
        """Test that Sunday (ordinal 0) is reachable from later weekdays."""
        rule = RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={0, 3})
        self.assertEqual(next_occurrence(at(2024, 1, 3), rule), at(2024, 1, 7))
        self.assertEqual(next_occurrence(at(2024, 1, 7), rule), at(2024, 1, 10))

    def test_custom_single_current_weekday_advances(self):
        """Test that a set holding only today's weekday advances 7*interval days."""
        rule = RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1}, interval=3)
        self.assertEqual(next_occurrence(at(2024, 1, 1), rule), at(2024, 1, 22))

    def test_always_strictly_after(self):
        rules = [
            RecurrenceRule(type=RecurrenceType.DAILY),
            RecurrenceRule(type=RecurrenceType.WEEKLY),
            RecurrenceRule(type=RecurrenceType.MONTHLY, day_of_month=1),
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={0, 1, 2, 3, 4, 5, 6}),
        ]
        current = at(2024, 1, 1)
        for rule in rules:
            self.assertGreater(next_occurrence(current, rule), current)

    def test_none_rule_raises(self):
        with self.assertRaises(ValueError):
            next_occurrence(at(2024, 1, 1), RecurrenceRule.once())


class ExpandTests(SimpleTestCase):
    """Test expand over windows, bounds and exceptions."""

    def setUp(self):
        self.weekly = make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY))

    def test_weekly_example(self):
        """Test weekly Monday rule yields the four Mondays in the window."""
        result = expand(self.weekly, date(2024, 1, 1), date(2024, 1, 22))

        self.assertEqual(
            start_dates(result),
            [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22)]
        )
        self.assertFalse(result.truncated)

    def test_custom_example(self):
        """Test Mon/Wed/Fri custom rule over two weeks."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 3, 5})
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 14))

        self.assertEqual(start_dates(result), [
            date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 5),
            date(2024, 1, 8), date(2024, 1, 10), date(2024, 1, 12),
        ])

    def test_monthly_clamp_example(self):
        """Test a rule anchored on the 31st clamps without drifting."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.MONTHLY),
            start_time=at(2024, 1, 31)
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(start_dates(result), [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30),
        ])

    def test_exception_example(self):
        """Test an exception removes only that date."""
        definition = dataclasses.replace(self.weekly, exceptions=frozenset({date(2024, 1, 15)}))

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 22))

        self.assertEqual(
            start_dates(result),
            [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 22)]
        )

    def test_exception_applies_to_whole_day(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY),
            start_time=at(2024, 1, 1, 23, 30),
            exceptions=[date(2024, 1, 2)]
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 3))

        self.assertEqual(start_dates(result), [date(2024, 1, 1), date(2024, 1, 3)])

    def test_single_event_inside_window(self):
        """Test a non-recurring event yields exactly one occurrence when in range."""
        result = expand(make_definition(), at(2024, 1, 1, 9, 0), at(2024, 1, 1, 9, 0))
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].start_time, at(2024, 1, 1))

    def test_single_event_outside_window(self):
        result = expand(make_definition(), date(2024, 1, 2), date(2024, 1, 31))
        self.assertEqual(len(result), 0)

    def test_single_event_ignores_exceptions_and_rule_fields(self):
        definition = make_definition(RecurrenceRule(type=RecurrenceType.NONE, count=0))
        self.assertEqual(len(expand(definition, date(2024, 1, 1), date(2024, 1, 1))), 1)

    def test_until_is_inclusive_upper_bound(self):
        """Test that nothing after until is produced."""
        inclusive = make_definition(RecurrenceRule(type=RecurrenceType.DAILY, until=at(2024, 1, 5)))
        earlier = make_definition(RecurrenceRule(type=RecurrenceType.DAILY, until=at(2024, 1, 5, 8, 0)))

        inclusive_result = expand(inclusive, date(2024, 1, 1), date(2024, 1, 31))
        earlier_result = expand(earlier, date(2024, 1, 1), date(2024, 1, 31))

        self.assertEqual(len(inclusive_result), 5)
        self.assertEqual(len(earlier_result), 4)
        self.assertTrue(all(occ.start_time <= at(2024, 1, 5) for occ in inclusive_result))

    def test_count_bounds_rule_across_windows(self):
        """Test that count caps occurrences cumulatively, not per window."""
        definition = make_definition(RecurrenceRule(type=RecurrenceType.DAILY, count=5))

        first = expand(definition, date(2024, 1, 1), date(2024, 1, 3))
        second = expand(definition, date(2024, 1, 4), date(2024, 1, 10))
        later = expand(definition, date(2024, 2, 1), date(2024, 2, 29))

        self.assertEqual(len(first), 3)
        self.assertEqual(len(second), 2)
        self.assertEqual(len(later), 0)

    def test_skipped_exception_counts_towards_count(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY, count=3),
            exceptions=[date(2024, 1, 2)]
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 31))

        self.assertEqual(start_dates(result), [date(2024, 1, 1), date(2024, 1, 3)])

    def test_occurrences_before_window_are_not_emitted(self):
        result = expand(self.weekly, date(2024, 1, 10), date(2024, 1, 31))
        self.assertEqual(
            start_dates(result),
            [date(2024, 1, 15), date(2024, 1, 22), date(2024, 1, 29)]
        )

    def test_expansion_is_restartable(self):
        """Test that identical calls give identical, identically ordered output."""
        first = expand(self.weekly, date(2024, 1, 1), date(2024, 3, 31))
        second = expand(self.weekly, date(2024, 1, 1), date(2024, 3, 31))

        self.assertEqual(first, second)
        self.assertEqual([occ.id for occ in first], [occ.id for occ in second])

    def test_definition_is_not_mutated(self):
        snapshot = dataclasses.replace(self.weekly)
        expand(self.weekly, date(2024, 1, 1), date(2024, 12, 31))
        self.assertEqual(self.weekly, snapshot)

    def test_occurrence_ids_and_times(self):
        """Test synthetic ids and duration offset of generated occurrences."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY),
            end_time=at(2024, 1, 1, 9, 30)
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 2))

        self.assertEqual(
            [occ.id for occ in result],
            ['evt-1_2024-01-01T09:00:00+00:00', 'evt-1_2024-01-02T09:00:00+00:00']
        )
        self.assertEqual(result[1].end_time, at(2024, 1, 2, 9, 30))
        self.assertEqual(result[1].title, 'Morning walk')
        self.assertEqual(result[1].definition_id, 'evt-1')

    def test_truncation_is_flagged(self):
        """Test hitting the iteration ceiling returns partial, flagged output."""
        definition = make_definition(RecurrenceRule(type=RecurrenceType.DAILY))

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 31), max_iterations=10)

        self.assertTrue(result.truncated)
        self.assertEqual(result.truncated_definitions, ('evt-1',))
        self.assertEqual(len(result), 10)
        self.assertEqual(start_dates(result), sorted(start_dates(result)))

    def test_truncation_can_be_raised(self):
        definition = make_definition(RecurrenceRule(type=RecurrenceType.DAILY))
        result = expand(definition, date(2024, 1, 1), date(2024, 1, 31), max_iterations=10)

        with self.assertRaises(TruncatedExpansionError) as ctx:
            result.raise_for_truncation()
        self.assertEqual(len(ctx.exception.occurrences), 10)

    def test_finished_walk_is_not_truncated(self):
        """Test that ending exactly at the ceiling, or by count, is not truncation."""
        open_ended = make_definition(RecurrenceRule(type=RecurrenceType.DAILY))
        counted = make_definition(RecurrenceRule(type=RecurrenceType.DAILY, count=10))

        self.assertFalse(
            expand(open_ended, date(2024, 1, 1), date(2024, 1, 10), max_iterations=10).truncated
        )
        self.assertFalse(
            expand(counted, date(2024, 1, 1), date(2024, 1, 31), max_iterations=10).truncated
        )
        ExpansionResult().raise_for_truncation()

    def test_old_daily_rule_in_one_day_window(self):
        """Test that a rule started long before the window is not truncated."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY),
            start_time=at(2023, 1, 1)
        )

        result = expand(definition, date(2024, 6, 1), date(2024, 6, 1))

        self.assertEqual(start_dates(result), [date(2024, 6, 1)])
        self.assertFalse(result.truncated)

    def test_ceiling_counts_only_candidates_in_window(self):
        """Test that narrowing the window recovers from truncation."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY),
            start_time=at(2020, 1, 1)
        )

        narrow = expand(definition, date(2024, 1, 1), date(2024, 1, 5), max_iterations=5)
        wide = expand(definition, date(2024, 1, 1), date(2024, 1, 6), max_iterations=5)

        self.assertFalse(narrow.truncated)
        self.assertEqual(len(narrow), 5)
        self.assertTrue(wide.truncated)
        self.assertEqual(start_dates(wide), start_dates(narrow))

    def test_exception_on_monthly_rule(self):
        """Test that an exception removes a clamped month-end occurrence."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.MONTHLY),
            start_time=at(2024, 1, 31),
            exceptions=[date(2024, 2, 29)]
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(
            start_dates(result),
            [date(2024, 1, 31), date(2024, 3, 31), date(2024, 4, 30)]
        )

    def test_exception_on_custom_rule(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 3, 5}),
            exceptions=[date(2024, 1, 3), date(2024, 1, 12)]
        )

        result = expand(definition, date(2024, 1, 1), date(2024, 1, 14))

        self.assertEqual(
            start_dates(result),
            [date(2024, 1, 1), date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 10)]
        )

    def test_window_start_after_end_rejected(self):
        with self.assertRaises(InvalidWindowError):
            expand(self.weekly, date(2024, 2, 1), date(2024, 1, 1))


class SkipToWindowTests(SimpleTestCase):
    """Test skipping ahead to a window against walking from the start."""

    def assertMatchesFullWalk(self, definition, window_start, window_end):
        first, _ = resolve_window(window_start, window_end, definition.start_time.tzinfo)
        full_walk = expand(definition, definition.start_time, window_end, max_iterations=100000)

        result = expand(definition, window_start, window_end)

        self.assertFalse(result.truncated)
        self.assertEqual(
            list(result),
            [occurrence for occurrence in full_walk if occurrence.start_time >= first]
        )

    def test_window_before_start(self):
        definition = make_definition(RecurrenceRule(type=RecurrenceType.DAILY))
        self.assertEqual(skip_to_window(definition, at(2023, 6, 1)), (at(2024, 1, 1), 0))

    def test_daily_position(self):
        """Test the skipped candidate keeps its lifetime position."""
        definition = make_definition(RecurrenceRule(type=RecurrenceType.DAILY))
        self.assertEqual(skip_to_window(definition, at(2024, 1, 11, 0, 0)), (at(2024, 1, 9), 8))

    def test_custom_position(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1, 3, 5})
        )
        self.assertEqual(skip_to_window(definition, at(2024, 1, 29, 0, 0)), (at(2024, 1, 22), 9))

    def test_daily_interval(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY, interval=3),
            start_time=at(2021, 3, 5)
        )
        self.assertMatchesFullWalk(definition, date(2024, 2, 10), date(2024, 3, 10))

    def test_weekly_with_count(self):
        """Test count still bounds the rule after skipping."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.WEEKLY, interval=2, count=60),
            start_time=at(2022, 1, 3)
        )
        self.assertMatchesFullWalk(definition, date(2024, 1, 1), date(2024, 6, 30))
        self.assertEqual(len(expand(definition, date(2025, 1, 1), date(2025, 12, 31))), 0)

    def test_monthly_clamped(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.MONTHLY),
            start_time=at(2021, 1, 31)
        )
        self.assertMatchesFullWalk(definition, date(2024, 1, 1), date(2024, 6, 30))

    def test_monthly_day_of_month_interval(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.MONTHLY, interval=5, day_of_month=15),
            start_time=at(2019, 7, 2)
        )
        self.assertMatchesFullWalk(definition, date(2024, 1, 1), date(2025, 12, 31))

    def test_custom_with_count(self):
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={0, 3, 5}, interval=2, count=150),
            start_time=at(2022, 1, 6)
        )
        self.assertMatchesFullWalk(definition, date(2023, 3, 1), date(2023, 4, 30))
        self.assertMatchesFullWalk(definition, date(2023, 1, 1), date(2023, 12, 31))

    def test_custom_off_pattern_start(self):
        """Test a start on an unconfigured weekday (Saturday) before Mondays only."""
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.CUSTOM, days_of_week={1}, interval=3),
            start_time=at(2022, 1, 1)
        )
        self.assertMatchesFullWalk(definition, date(2024, 5, 1), date(2024, 8, 31))

    def test_daily_across_daylight_saving_change(self):
        new_york = ZoneInfo('America/New_York')
        definition = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY),
            start_time=datetime(2023, 1, 1, 9, 0, tzinfo=new_york)
        )

        self.assertMatchesFullWalk(definition, date(2024, 3, 9), date(2024, 3, 12))
        result = expand(definition, date(2024, 3, 9), date(2024, 3, 12))
        self.assertEqual({occ.start_time.hour for occ in result}, {9})


class WindowTests(SimpleTestCase):
    """Test window bound resolution."""

    def test_dates_cover_whole_days(self):
        start, end = resolve_window(date(2024, 1, 1), date(2024, 1, 2), UTC)
        self.assertEqual(start, datetime(2024, 1, 1, tzinfo=UTC))
        self.assertEqual(end.date(), date(2024, 1, 2))
        self.assertEqual((end.hour, end.minute, end.second), (23, 59, 59))

    def test_datetimes_pass_through(self):
        self.assertEqual(
            resolve_window(at(2024, 1, 1), at(2024, 1, 1)),
            (at(2024, 1, 1), at(2024, 1, 1))
        )


class ExpansionResultTests(SimpleTestCase):
    """Test merging of per-definition results."""

    def test_merge_sorts_by_start_time(self):
        walk = make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY))
        yoga = make_definition(
            RecurrenceRule(type=RecurrenceType.WEEKLY),
            id='evt-2',
            start_time=at(2024, 1, 3, 7, 0)
        )

        merged = ExpansionResult.merge([
            expand(walk, date(2024, 1, 1), date(2024, 1, 14)),
            expand(yoga, date(2024, 1, 1), date(2024, 1, 14)),
        ])

        self.assertEqual(
            [(occ.definition_id, occ.start_time.date()) for occ in merged],
            [
                ('evt-1', date(2024, 1, 1)),
                ('evt-2', date(2024, 1, 3)),
                ('evt-1', date(2024, 1, 8)),
                ('evt-2', date(2024, 1, 10)),
            ]
        )
        self.assertFalse(merged.truncated)


class EventQueryTests(SimpleTestCase):
    """Test chainable query building."""

    def test_chaining_returns_new_queries(self):
        base = EventQuery()
        filtered = base.for_user('user-1')

        self.assertEqual(base.conditions, [])
        self.assertEqual(filtered.to_params()['where[userId][equals]'], 'user-1')

    def test_combined_conditions(self):
        params = EventQuery().for_user('user-1').with_category('health').pending().to_params()

        self.assertEqual(params['where[and][0][userId][equals]'], 'user-1')
        self.assertEqual(params['where[and][1][category][equals]'], 'health')
        self.assertEqual(params['where[and][2][isCompleted][equals]'], 'false')
        self.assertEqual(params['limit'], '100')
        self.assertEqual(params['sort'], 'startTime')

    def test_window_over_selects_recurring_events(self):
        """Test the window query keeps open-ended and still-running rules."""
        params = EventQuery().in_window(at(2024, 1, 1, 0, 0), at(2024, 1, 31, 0, 0)).to_params()

        self.assertEqual(params['where[or][0][and][0][recurrence.type][equals]'], 'none')
        self.assertEqual(
            params['where[or][0][and][1][startTime][greater_than_equal]'],
            '2024-01-01T00:00:00+00:00'
        )
        self.assertEqual(params['where[or][1][and][0][recurrence.type][not_equals]'], 'none')
        self.assertEqual(
            params['where[or][1][and][2][or][0][recurrence.until][greater_than_equal]'],
            '2024-01-01T00:00:00+00:00'
        )
        self.assertEqual(params['where[or][1][and][2][or][1][recurrence.until][exists]'], 'false')

    def test_page(self):
        query = EventQuery(limit=20)
        self.assertNotIn('page', query.to_params())
        self.assertEqual(query.page(3).to_params()['page'], '3')
        self.assertEqual(query.page(3).to_params()['limit'], '20')


def _response(body=None, status_code=200):
    response = mock.Mock(status_code=status_code)
    response.content = json.dumps(body).encode() if body is not None else b''
    response.json.return_value = body
    return response


class CMSEventStoreTests(SimpleTestCase):
    """Test the content API client."""

    def setUp(self):
        self.session = mock.Mock()
        self.session.headers = {}
        self.store = CMSEventStore('http://cms.test/', token='secret', timeout=3, session=self.session)

    def test_find_parses_collection_records(self):
        """Test records in content API shape become EventDefinitions."""
        document = cms_document(
            eventType='recipe',
            recipeReference={'id': 'rec-9', 'titulo': 'Avena con fruta', 'calorias': '320'},
            recurrence={
                'type': 'custom', 'interval': None,
                'daysOfWeek': [{'day': '1'}, {'day': '3'}],
                'until': '2024-03-01T00:00:00.000Z',
            },
            exceptions=[{'date': '2024-01-15T00:00:00.000Z'}],
        )
        self.session.request.return_value = _response({'docs': [document], 'hasNextPage': False})

        definitions = self.store.find(EventQuery().for_user('user-1'))

        self.assertEqual(len(definitions), 1)
        definition = definitions[0]
        self.assertEqual(definition.id, 'evt-1')
        self.assertEqual(definition.event_type, EventType.RECIPE)
        self.assertEqual(definition.payload, RecipeReference(id='rec-9', title='Avena con fruta'))
        self.assertEqual(definition.payload.attributes['calorias'], '320')
        self.assertEqual(definition.recurrence.type, RecurrenceType.CUSTOM)
        self.assertEqual(definition.recurrence.interval, 1)
        self.assertEqual(definition.recurrence.days_of_week, frozenset({1, 3}))
        self.assertEqual(definition.exceptions, frozenset({date(2024, 1, 15)}))
        self.assertEqual(definition.tags, ('outdoors',))
        self.assertEqual(definition.reminder.minutes_before, 15)
        self.assertEqual(definition.duration, timedelta(minutes=30))

        method, url = self.session.request.call_args.args
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual((method, url), ('GET', 'http://cms.test/api/events'))
        self.assertEqual(kwargs['params']['where[userId][equals]'], 'user-1')
        self.assertEqual(kwargs['timeout'], 3)
        self.assertEqual(self.session.headers['Authorization'], 'Bearer secret')

    def test_find_follows_pages(self):
        self.session.request.side_effect = [
            _response({'docs': [cms_document()], 'hasNextPage': True, 'nextPage': 2}),
            _response({'docs': [cms_document(id='evt-2')], 'hasNextPage': False}),
        ]

        definitions = self.store.find(EventQuery())

        self.assertEqual([d.id for d in definitions], ['evt-1', 'evt-2'])
        self.assertEqual(self.session.request.call_args_list[1].kwargs['params']['page'], '2')

    def test_timeout_is_fetch_error(self):
        """Test that a timeout surfaces as FetchError, not an empty list."""
        self.session.request.side_effect = requests.Timeout('read timed out')

        with self.assertRaises(FetchError):
            self.store.find(EventQuery())

    def test_connection_error_is_fetch_error(self):
        self.session.request.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(FetchError):
            self.store.find(EventQuery())

    def test_http_error_is_fetch_error(self):
        self.session.request.return_value = _response({'errors': []}, status_code=500)

        with self.assertRaises(FetchError) as ctx:
            self.store.find(EventQuery())
        self.assertEqual(ctx.exception.status_code, 500)

    def test_malformed_record_is_fetch_error(self):
        document = cms_document(recurrence={'type': 'daily', 'interval': 0})
        self.session.request.return_value = _response({'docs': [document], 'hasNextPage': False})

        with self.assertRaises(FetchError):
            self.store.find(EventQuery())

    def test_get_missing_event(self):
        self.session.request.return_value = _response({'errors': []}, status_code=404)

        with self.assertRaises(EventNotFoundError):
            self.store.get('missing')

    def test_create_posts_document(self):
        self.session.request.return_value = _response({'doc': cms_document(id='evt-7')})

        definition = self.store.create({'title': 'Morning walk'})

        self.assertEqual(definition.id, 'evt-7')
        self.assertEqual(self.session.request.call_args.kwargs['json'], {'title': 'Morning walk'})

    def test_failed_write_is_store_error(self):
        self.session.request.return_value = _response({'errors': []}, status_code=400)

        with self.assertRaises(StoreError) as ctx:
            self.store.create({'title': 'Morning walk'})
        self.assertNotIsInstance(ctx.exception, FetchError)


class EventDefinitionSerializerTests(SimpleTestCase):
    """Test validation of event records."""

    def test_mismatched_reference_rejected(self):
        """Test that only the reference matching eventType may be set."""
        serializer = EventDefinitionSerializer(data=cms_document(
            eventType='recipe', recipeReference='rec-1', exerciseReference='ex-1'
        ))

        self.assertFalse(serializer.is_valid())
        self.assertIn('exerciseReference', serializer.errors)

    def test_missing_reference_rejected(self):
        serializer = EventDefinitionSerializer(data=cms_document(eventType='ritual'))

        self.assertFalse(serializer.is_valid())
        self.assertIn('ritualReference', serializer.errors)

    def test_mood_payload(self):
        serializer = EventDefinitionSerializer(data=cms_document(
            eventType='mood',
            moodData={'mood': 'radiante', 'intensity': 8, 'triggers': None},
            recurrence={'type': 'none'},
        ))

        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.validated_data.payload, MoodEntry(mood='radiante', intensity=8))

    def test_rule_errors_use_api_field_names(self):
        serializer = EventDefinitionSerializer(data=cms_document(
            recurrence={'type': 'custom', 'daysOfWeek': []}
        ))

        self.assertFalse(serializer.is_valid())
        self.assertIn('daysOfWeek', serializer.errors['recurrence'])


class OccurrenceServiceTests(SimpleTestCase):
    """Test the occurrence listing service."""

    def setUp(self):
        self.walk = make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY))
        self.checkup = make_definition(
            id='evt-2',
            title='Checkup',
            start_time=at(2024, 1, 10, 16, 0)
        )
        self.other_user = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY),
            id='evt-3',
            user_id='user-2'
        )
        self.store = InMemoryEventStore([self.walk, self.checkup, self.other_user])

    def test_list_occurrences_merges_and_sorts(self):
        """Test occurrences of all the user's definitions come back in order."""
        result = services.list_occurrences(
            'user-1', at(2024, 1, 1, 0, 0), at(2024, 1, 22, 23, 0), store=self.store
        )

        self.assertEqual(
            [(occ.definition_id, occ.start_time.date()) for occ in result],
            [
                ('evt-1', date(2024, 1, 1)),
                ('evt-1', date(2024, 1, 8)),
                ('evt-2', date(2024, 1, 10)),
                ('evt-1', date(2024, 1, 15)),
                ('evt-1', date(2024, 1, 22)),
            ]
        )
        self.assertFalse(result.truncated)

    def test_list_occurrences_uses_window_query(self):
        services.list_occurrences('user-1', at(2024, 1, 1, 0, 0), at(2024, 1, 31, 0, 0), store=self.store)

        params = self.store.queries[0].to_params()
        self.assertEqual(params['where[and][0][userId][equals]'], 'user-1')
        self.assertIn('where[and][1][or][1][and][2][or][1][recurrence.until][exists]', params)

    def test_fetch_failure_is_not_an_empty_result(self):
        """Test that a failed fetch raises instead of returning nothing."""
        with self.assertRaises(FetchError):
            services.list_occurrences(
                'user-1', at(2024, 1, 1), at(2024, 1, 31), store=InMemoryEventStore(fail=True)
            )

    def test_no_events_is_an_empty_result(self):
        result = services.list_occurrences(
            'nobody', at(2024, 1, 1), at(2024, 1, 31), store=self.store
        )
        self.assertEqual(len(result), 0)

    def test_truncation_is_reported(self):
        """Test a definition over the ceiling is flagged while others are complete."""
        daily = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY), id='evt-daily', start_time=at(2020, 1, 1)
        )
        store = InMemoryEventStore([self.walk, daily])

        result = services.list_occurrences(
            'user-1', at(2024, 1, 1, 0, 0), at(2024, 1, 8, 23, 0), store=store, max_iterations=3
        )

        self.assertEqual(result.truncated_definitions, ('evt-daily',))
        self.assertEqual(
            [(occ.definition_id, occ.start_time.date()) for occ in result],
            [
                ('evt-1', date(2024, 1, 1)),
                ('evt-daily', date(2024, 1, 1)),
                ('evt-daily', date(2024, 1, 2)),
                ('evt-daily', date(2024, 1, 3)),
                ('evt-1', date(2024, 1, 8)),
            ]
        )

    @override_settings(EVENTS_MAX_EXPANSION_ITERATIONS=3)
    def test_ceiling_read_from_settings(self):
        daily = make_definition(RecurrenceRule(type=RecurrenceType.DAILY), id='evt-daily')

        result = services.list_occurrences(
            'user-1', date(2024, 1, 1), date(2024, 1, 31), store=InMemoryEventStore([daily])
        )

        self.assertEqual(len(result), 3)
        self.assertTrue(result.truncated)

    def test_invalid_window_rejected(self):
        with self.assertRaises(InvalidWindowError):
            services.list_occurrences('user-1', at(2024, 2, 1), at(2024, 1, 1), store=self.store)

    @override_settings(EVENTS_MAX_EXPANSION_ITERATIONS=3)
    def test_upcoming_reports_truncation(self):
        """Test the upcoming list keeps the truncation flag."""
        daily = make_definition(RecurrenceRule(type=RecurrenceType.DAILY), id='evt-daily')

        upcoming = services.get_upcoming_occurrences(
            'user-1', store=InMemoryEventStore([daily]), now=at(2024, 1, 10, 12, 0)
        )

        self.assertEqual(upcoming.truncated_definitions, ('evt-daily',))
        self.assertEqual(
            start_dates(upcoming),
            [date(2024, 1, 11), date(2024, 1, 12), date(2024, 1, 13)]
        )

    def test_upcoming_for_old_rule(self):
        old_walk = dataclasses.replace(self.walk, start_time=at(2021, 1, 4))

        upcoming = services.get_upcoming_occurrences(
            'user-1', limit=2, store=InMemoryEventStore([old_walk]), now=at(2024, 1, 10, 12, 0)
        )

        self.assertFalse(upcoming.truncated)
        self.assertEqual(start_dates(upcoming), [date(2024, 1, 15), date(2024, 1, 22)])

    def test_upcoming_skips_past_and_completed(self):
        done = make_definition(
            RecurrenceRule(type=RecurrenceType.DAILY), id='evt-done', is_completed=True
        )
        store = InMemoryEventStore([self.walk, self.checkup, done])

        upcoming = services.get_upcoming_occurrences(
            'user-1', limit=3, store=store, now=at(2024, 1, 10, 12, 0)
        )

        self.assertEqual(
            [(occ.definition_id, occ.start_time.date()) for occ in upcoming],
            [
                ('evt-2', date(2024, 1, 10)),
                ('evt-1', date(2024, 1, 15)),
                ('evt-1', date(2024, 1, 22)),
            ]
        )


class EventServiceTests(SimpleTestCase):
    """Test event definition services."""

    def setUp(self):
        self.walk = make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY))
        self.store = InMemoryEventStore([self.walk])

    def test_add_exception_persists_merged_set(self):
        """Test adding an exception date writes the full set back."""
        updated = services.add_exception('evt-1', date(2024, 1, 15), store=self.store)

        self.assertIn(date(2024, 1, 15), updated.exceptions)
        event_id, changes = self.store.updates[0]
        self.assertEqual(event_id, 'evt-1')
        self.assertEqual(changes, {'exceptions': [{'date': '2024-01-15'}]})

        result = services.list_occurrences('user-1', date(2024, 1, 1), date(2024, 1, 22), store=self.store)
        self.assertNotIn(date(2024, 1, 15), start_dates(result))

    def test_add_existing_exception_is_noop(self):
        self.store.definitions['evt-1'] = dataclasses.replace(
            self.walk, exceptions=frozenset({date(2024, 1, 15)})
        )

        services.add_exception('evt-1', date(2024, 1, 15), store=self.store)

        self.assertEqual(self.store.updates, [])

    def test_add_exception_to_single_event_rejected(self):
        self.store.definitions['evt-1'] = make_definition()

        with self.assertRaises(ValidationError) as ctx:
            services.add_exception('evt-1', date(2024, 1, 1), store=self.store)
        self.assertIn('date', ctx.exception.message_dict)
        self.assertEqual(self.store.updates, [])

    def test_set_completed_marks_series(self):
        """Test completion applies to the definition and so to every occurrence."""
        updated = services.set_completed('evt-1', store=self.store)

        _, changes = self.store.updates[0]
        self.assertTrue(changes['isCompleted'])
        self.assertIsNotNone(changes['completedAt'])
        result = expand(updated, date(2024, 1, 1), date(2024, 1, 22))
        self.assertTrue(all(occ.is_completed for occ in result))

    def test_set_pending_clears_completion_time(self):
        services.set_completed('evt-1', is_completed=False, store=self.store)

        _, changes = self.store.updates[0]
        self.assertEqual(changes, {'isCompleted': False, 'completedAt': None})

    def test_update_without_changes_reads_event(self):
        updated = services.update_event('evt-1', EventUpdateData(), store=self.store)

        self.assertEqual(updated, self.walk)
        self.assertEqual(self.store.updates, [])

    def test_moving_start_keeps_duration(self):
        """Test that moving only the start moves the stored end along."""
        self.store.definitions['evt-1'] = dataclasses.replace(self.walk, end_time=at(2024, 1, 1, 9, 30))

        updated = services.update_event(
            'evt-1', EventUpdateData(start_time=at(2024, 1, 2)), store=self.store
        )

        _, changes = self.store.updates[0]
        self.assertEqual(changes['startTime'], at(2024, 1, 2).isoformat())
        self.assertEqual(changes['endTime'], at(2024, 1, 2, 9, 30).isoformat())
        self.assertEqual(updated.duration, timedelta(minutes=30))

    def test_moving_start_without_stored_end(self):
        services.update_event('evt-1', EventUpdateData(start_time=at(2024, 1, 2)), store=self.store)

        _, changes = self.store.updates[0]
        self.assertNotIn('endTime', changes)

    def test_end_before_stored_start_rejected(self):
        """Test that a new end before the stored start is never sent."""
        with self.assertRaises(ValidationError) as ctx:
            services.update_event('evt-1', EventUpdateData(end_time=at(2023, 12, 31)), store=self.store)

        self.assertIn('endTime', ctx.exception.message_dict)
        self.assertEqual(self.store.updates, [])

    def test_start_after_stored_end_rejected_when_end_given(self):
        self.store.definitions['evt-1'] = dataclasses.replace(self.walk, end_time=at(2024, 1, 1, 9, 30))

        with self.assertRaises(ValidationError):
            services.update_event(
                'evt-1',
                EventUpdateData(start_time=at(2024, 1, 3), end_time=at(2024, 1, 2)),
                store=self.store
            )
        self.assertEqual(self.store.updates, [])

    def test_list_events_filters(self):
        services.list_events('user-1', category='health', pending=True, store=self.store)

        params = self.store.queries[0].to_params()
        self.assertEqual(params['where[and][1][category][equals]'], 'health')
        self.assertEqual(params['where[and][2][isCompleted][equals]'], 'false')


class WellnessEventServiceTests(SimpleTestCase):
    """Test typed event factories, completion records and activity listings."""

    def setUp(self):
        self.store = InMemoryEventStore()

    def test_create_recipe_event_defaults(self):
        event = services.create_recipe_event(
            'user-1', 'rec-9', 'Avena', at(2024, 1, 2, 18, 0), store=self.store
        )

        self.assertEqual(event.event_type, EventType.RECIPE)
        self.assertEqual(event.payload.id, 'rec-9')
        self.assertEqual(event.title, 'Cocinar: Avena')
        self.assertEqual(event.description, 'Preparar la receta: Avena')
        self.assertEqual(event.category, 'nutrition')
        self.assertEqual(event.color, 'orange')
        self.assertEqual(event.location, 'Cocina')
        self.assertFalse(event.is_recurring)

    def test_exercise_event_keeps_location_and_rule(self):
        event = services.create_exercise_event(
            'user-1', 'ex-3', 'Sentadillas', at(2024, 1, 2, 7, 0),
            recurrence=RecurrenceRule(type=RecurrenceType.WEEKLY),
            location='Parque',
            store=self.store
        )

        self.assertEqual(event.title, 'Entrenar: Sentadillas')
        self.assertEqual(event.color, 'blue')
        self.assertEqual(event.location, 'Parque')
        self.assertEqual(event.recurrence.type, RecurrenceType.WEEKLY)
        self.assertEqual(self.store.created[0]['exerciseReference'], 'ex-3')

    def test_challenge_and_ritual_defaults(self):
        challenge = services.create_challenge_event(
            'user-1', 'ch-1', 'Sin azúcar', at(2024, 1, 2), store=self.store
        )
        ritual = services.create_ritual_event(
            'user-1', 'rt-1', 'Respiración', at(2024, 1, 2), store=self.store
        )

        self.assertEqual(challenge.title, 'Mini Reto: Sin azúcar')
        self.assertEqual(challenge.category, 'health')
        self.assertEqual(ritual.title, 'Ritual: Respiración')
        self.assertEqual(ritual.event_type, EventType.RITUAL)
        self.assertEqual({challenge.location, ritual.location}, {'Casa'})

    def test_create_mood_event(self):
        """Test a mood check-in is a single low-priority event at the given time."""
        event = services.create_mood_event(
            'user-1', 'tranquila', intensity=6, triggers='trabajo',
            store=self.store, now=at(2024, 1, 5, 20, 0)
        )

        self.assertEqual(event.payload, MoodEntry(mood='tranquila', intensity=6, triggers='trabajo'))
        self.assertEqual(event.title, 'Estado emocional: Tranquila')
        self.assertEqual(event.description, 'Intensidad: 6/10')
        self.assertEqual(event.color, 'green')
        self.assertEqual(event.category, 'selfcare')
        self.assertEqual(event.priority, 'low')
        self.assertEqual(event.start_time, at(2024, 1, 5, 20, 0))
        self.assertFalse(event.is_recurring)

    def test_create_mood_event_rejects_unknown_mood(self):
        with self.assertRaises(ValidationError):
            services.create_mood_event('user-1', 'furiosa', store=self.store)
        self.assertEqual(self.store.created, [])

    def test_record_completed_ritual(self):
        """Test a finished ritual is stored completed with its own source."""
        event = services.record_completed_ritual(
            'user-1', 'rt-1', 'Respiración', duration_minutes=15,
            store=self.store, now=at(2024, 1, 5, 21, 0)
        )

        self.assertTrue(event.is_completed)
        self.assertEqual(event.metadata.source, 'ritual-completion')
        self.assertEqual(event.title, 'Ritual completado: Respiración')
        self.assertEqual(
            event.description,
            'Dedicaste 15 minutos a tu bienestar realizando este ritual'
        )
        self.assertTrue(self.store.updates[0][1]['isCompleted'])

    def test_record_completed_challenge(self):
        event = services.record_completed_challenge(
            'user-1', 'ch-1', 'Sin azúcar', store=self.store, now=at(2024, 1, 5, 21, 0)
        )

        self.assertTrue(event.is_completed)
        self.assertEqual(event.metadata.source, 'challenge-completion')
        self.assertEqual(event.description, 'Completaste el mini reto: Sin azúcar')
        self.assertEqual(event.color, 'blue')

    def test_mood_and_activity_listings(self):
        """Test activity is recorded mood, ritual or challenge events only."""
        mood = make_definition(id='mood', payload=MoodEntry(mood='radiante'))
        done = make_definition(
            id='done',
            payload=RitualReference(id='rt-1'),
            metadata=EventMetadata(source='ritual-completion')
        )
        scheduled = make_definition(
            id='scheduled',
            payload=RitualReference(id='rt-1'),
            metadata=EventMetadata(source='calendar')
        )
        recipe = make_definition(id='recipe', payload=RecipeReference(id='rec-1'))
        store = InMemoryEventStore([mood, done, scheduled, recipe])

        moods = services.get_mood_events('user-1', store=store)
        activity = services.get_activity_events('user-1', store=store)

        self.assertEqual([event.id for event in moods], ['mood'])
        self.assertEqual([event.id for event in activity], ['mood', 'done'])

    def test_listing_window_filters_by_start(self):
        services.get_mood_events('user-1', date(2024, 1, 1), date(2024, 1, 31), store=self.store)

        params = self.store.queries[0].to_params()
        self.assertIn('where[and][1][and][0][startTime][greater_than_equal]', params)
        self.assertIn('where[and][1][and][1][startTime][less_than_equal]', params)


@mock.patch('events.services.get_event_store')
class OccurrenceAPITests(APISimpleTestCase):
    """Test occurrence API endpoints."""

    def setUp(self):
        self.store = InMemoryEventStore([
            make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY), start_time=at(2024, 1, 1, 15, 0)),
        ])

    def test_list_occurrences(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.get('/api/occurrences/', {
            'userId': 'user-1',
            'start': '2024-01-01',
            'end': '2024-01-22',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['truncated'])
        self.assertEqual(
            [occ['id'] for occ in response.data['occurrences']],
            [
                'evt-1_2024-01-01T15:00:00+00:00',
                'evt-1_2024-01-08T15:00:00+00:00',
                'evt-1_2024-01-15T15:00:00+00:00',
                'evt-1_2024-01-22T15:00:00+00:00',
            ]
        )
        self.assertEqual(response.data['occurrences'][0]['eventId'], 'evt-1')

    def test_fetch_error_is_bad_gateway(self, get_event_store):
        """Test that a store failure is reported, not shown as an empty calendar."""
        get_event_store.return_value = InMemoryEventStore(fail=True)

        response = self.client.get('/api/occurrences/', {
            'userId': 'user-1',
            'start': '2024-01-01',
            'end': '2024-01-22',
        })

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)

    def test_reversed_window_rejected(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.get('/api/occurrences/', {
            'userId': 'user-1',
            'start': '2024-02-01',
            'end': '2024-01-01',
        })

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_expand_inline_definition(self, get_event_store):
        """Test expanding a posted definition without the store."""
        response = self.client.post('/api/expand/', {
            'event': {
                'id': 'inline',
                'title': 'Stretching',
                'startTime': '2024-01-01T15:00:00Z',
                'recurrence': {'type': 'custom', 'daysOfWeek': [1, 3, 5]},
            },
            'start': '2024-01-01',
            'end': '2024-01-14',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['occurrences']), 6)
        get_event_store.assert_not_called()

    def test_expand_reports_truncation(self, get_event_store):
        response = self.client.post('/api/expand/', {
            'event': {
                'id': 'inline',
                'title': 'Water',
                'startTime': '2024-01-01T15:00:00Z',
                'recurrence': {'type': 'daily'},
            },
            'start': '2024-01-01',
            'end': '2024-01-31',
            'maxIterations': 5,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['truncated'])
        self.assertEqual(response.data['truncatedEvents'], ['inline'])
        self.assertEqual(len(response.data['occurrences']), 5)

    def test_expand_caps_max_iterations(self, get_event_store):
        """Test a client cannot raise the expansion ceiling."""
        response = self.client.post('/api/expand/', {
            'event': {
                'id': 'inline',
                'title': 'Water',
                'startTime': '2024-01-01T15:00:00Z',
                'recurrence': {'type': 'daily'},
            },
            'start': '2024-01-01',
            'end': '2200-12-31',
            'maxIterations': 10 ** 9,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('maxIterations', response.data)

    @override_settings(EVENTS_MAX_EXPANSION_ITERATIONS=4)
    def test_expand_defaults_to_configured_ceiling(self, get_event_store):
        response = self.client.post('/api/expand/', {
            'event': {
                'id': 'inline',
                'title': 'Water',
                'startTime': '2024-01-01T15:00:00Z',
                'recurrence': {'type': 'daily'},
            },
            'start': '2024-01-01',
            'end': '2024-01-31',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['truncated'])
        self.assertEqual(len(response.data['occurrences']), 4)

    def test_upcoming_occurrences(self, get_event_store):
        """Test the upcoming list reports truncation alongside occurrences."""
        get_event_store.return_value = self.store

        response = self.client.get('/api/occurrences/upcoming/', {'userId': 'user-1', 'limit': 3})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['truncated'])
        self.assertEqual(len(response.data['occurrences']), 3)

    def test_expand_rejects_invalid_rule(self, get_event_store):
        response = self.client.post('/api/expand/', {
            'event': {
                'id': 'inline',
                'title': 'Water',
                'startTime': '2024-01-01T15:00:00Z',
                'recurrence': {'type': 'weekly', 'interval': 0},
            },
            'start': '2024-01-01',
            'end': '2024-01-31',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('interval', response.data['event']['recurrence'])


@mock.patch('events.services.get_event_store')
class EventAPITests(APISimpleTestCase):
    """Test event definition API endpoints."""

    def setUp(self):
        self.store = InMemoryEventStore([
            make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY)),
        ])

    def test_create_recipe_event(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.post('/api/events/', {
            'userId': 'user-1',
            'eventType': 'recipe',
            'recipeReference': 'rec-9',
            'title': 'Cocinar: Avena',
            'startTime': '2024-01-02T18:00:00Z',
            'category': 'nutrition',
            'recurrence': {'type': 'weekly', 'interval': 2},
            'tags': ['breakfast'],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['eventType'], 'recipe')
        self.assertEqual(response.data['recipeReference']['id'], 'rec-9')
        document = self.store.created[0]
        self.assertEqual(document['recipeReference'], 'rec-9')
        self.assertEqual(document['recurrence']['interval'], 2)
        self.assertEqual(document['tags'], [{'tag': 'breakfast'}])
        self.assertEqual(document['exceptions'], [])

    def test_create_rejects_mismatched_payload(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.post('/api/events/', {
            'userId': 'user-1',
            'eventType': 'recipe',
            'exerciseReference': 'ex-1',
            'title': 'Cocinar',
            'startTime': '2024-01-02T18:00:00Z',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('exerciseReference', response.data)
        self.assertEqual(self.store.created, [])

    def test_get_missing_event(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.get('/api/events/missing/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_complete_event(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.post('/api/events/evt-1/complete/', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['isCompleted'])

    def test_add_exception(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.post(
            '/api/events/evt-1/exceptions/', {'date': '2024-01-15'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['exceptions'], ['2024-01-15'])

    def test_delete_event(self, get_event_store):
        get_event_store.return_value = self.store

        response = self.client.delete('/api/events/evt-1/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn('evt-1', self.store.definitions)


@mock.patch('events.services.get_event_store')
class ManagementCommandTests(SimpleTestCase):
    """Test management commands."""

    def test_list_occurrences_command(self, get_event_store):
        """Test the list_occurrences management command."""
        get_event_store.return_value = InMemoryEventStore([
            make_definition(RecurrenceRule(type=RecurrenceType.WEEKLY), start_time=at(2024, 1, 1, 15, 0)),
        ])

        out = StringIO()
        call_command('list_occurrences', '--user=user-1', '--start=2024-01-01', '--days=22', stdout=out)

        output = out.getvalue()
        self.assertIn('Morning walk', output)
        self.assertIn('Found 4 occurrence(s)', output)

    def test_fetch_error_becomes_command_error(self, get_event_store):
        get_event_store.return_value = InMemoryEventStore(fail=True)

        with self.assertRaises(CommandError):
            call_command('list_occurrences', '--user=user-1', stdout=StringIO())


class ExceptionHandlerTests(SimpleTestCase):
    """Test mapping of calendar errors to responses."""

    def test_invalid_window_is_bad_request(self):
        response = api_exception_handler(InvalidWindowError('Window start must not be after window end'), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_validation_error_is_bad_request(self):
        response = api_exception_handler(ValidationError({'endTime': 'End time must not be before start time.'}), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('endTime', response.data)

    def test_programming_errors_are_not_mapped(self):
        """Test a plain ValueError is left to fail loudly."""
        self.assertIsNone(api_exception_handler(ValueError('no next occurrence'), {}))
        with self.assertRaises(ValueError):
            next_occurrence(at(2024, 1, 1), RecurrenceRule.once())
