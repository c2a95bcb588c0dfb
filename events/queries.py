"""
Chainable queries against the remote event collection.

EventQuery plays the role a QuerySet plays for the ORM: each method returns
a new query with one more condition. No business logic should be here - only
query operations. ``to_params`` renders the query as the bracketed
``where[...]`` parameters the content API understands.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .types import RecurrenceType


DEFAULT_PAGE_LIMIT = 100


class EventQuery:
    """Immutable, chainable filter for event definitions."""

    def __init__(
        self,
        conditions: Optional[List[Dict[str, Any]]] = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        sort: str = 'startTime',
        page: int = 1
    ):
        self.conditions = list(conditions or [])
        self.limit = limit
        self.sort = sort
        self.page_number = page

    def __repr__(self):
        return f"<EventQuery conditions={self.conditions!r} page={self.page_number}>"

    def __eq__(self, other):
        if not isinstance(other, EventQuery):
            return NotImplemented
        return self.to_params() == other.to_params()

    def _clone(self, condition=None, **changes) -> 'EventQuery':
        conditions = self.conditions + ([condition] if condition else [])
        options = {'limit': self.limit, 'sort': self.sort, 'page': self.page_number}
        options.update(changes)
        return EventQuery(conditions, **options)

    def filter(self, **fields) -> 'EventQuery':
        """Add equality conditions, e.g. ``filter(category='health')``."""
        query = self
        for name, value in fields.items():
            query = query._clone({name: {'equals': value}})
        return query

    def for_user(self, user_id: str) -> 'EventQuery':
        """Get events owned by a user."""
        return self.filter(userId=user_id)

    def with_category(self, category: str) -> 'EventQuery':
        """Get events in a category."""
        return self.filter(category=category)

    def pending(self) -> 'EventQuery':
        """Get events not yet completed."""
        return self.filter(isCompleted=False)

    def starting_between(self, start: datetime, end: datetime) -> 'EventQuery':
        """Get definitions whose own start lies within [start, end]."""
        return self._clone({'and': [
            {'startTime': {'greater_than_equal': start}},
            {'startTime': {'less_than_equal': end}},
        ]})

    def in_window(self, start: datetime, end: datetime) -> 'EventQuery':
        """
        Get definitions that may produce occurrences within [start, end].

        Over-selects on purpose: single events must start in range, recurring
        events only need to start before the window closes and not end
        before it opens. Expansion performs the exact filtering.

        Args:
            start: datetime object
            end: datetime object
        """
        single = {'and': [
            {'recurrence.type': {'equals': RecurrenceType.NONE.value}},
            {'startTime': {'greater_than_equal': start}},
            {'startTime': {'less_than_equal': end}},
        ]}
        recurring = {'and': [
            {'recurrence.type': {'not_equals': RecurrenceType.NONE.value}},
            {'startTime': {'less_than_equal': end}},
            {'or': [
                {'recurrence.until': {'greater_than_equal': start}},
                {'recurrence.until': {'exists': False}},
            ]},
        ]}
        return self._clone({'or': [single, recurring]})

    def page(self, number: int) -> 'EventQuery':
        return self._clone(page=number)

    def where(self) -> Dict[str, Any]:
        if len(self.conditions) == 1:
            return self.conditions[0]
        return {'and': self.conditions}

    def to_params(self) -> Dict[str, str]:
        """Flatten the query into request parameters."""
        params: Dict[str, str] = {}
        if self.conditions:
            _flatten('where', self.where(), params)
        params['limit'] = str(self.limit)
        params['sort'] = self.sort
        if self.page_number > 1:
            params['page'] = str(self.page_number)
        return params


def _flatten(prefix: str, value: Any, params: Dict[str, str]) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            _flatten(f'{prefix}[{key}]', item, params)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _flatten(f'{prefix}[{index}]', item, params)
    else:
        params[prefix] = _format_value(value)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
