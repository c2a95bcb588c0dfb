"""
Error taxonomy for the event calendar and its REST exception handler.

Validation problems use Django's ``ValidationError`` directly. The errors
below cover the remote store and expansion truncation.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.serializers import as_serializer_error
from rest_framework.views import exception_handler


logger = logging.getLogger(__name__)


class EventCalendarError(Exception):
    """Base class for event calendar errors."""


class StoreError(EventCalendarError):
    """The remote event store could not complete a request."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class FetchError(StoreError):
    """Events could not be read; distinct from an empty result."""


class EventNotFoundError(StoreError):
    """The requested event definition does not exist."""

    def __init__(self, event_id):
        super().__init__(f'Event "{event_id}" was not found.', status_code=404)
        self.event_id = event_id


class InvalidWindowError(EventCalendarError, ValueError):
    """A requested time window starts after it ends."""


class TruncatedExpansionError(EventCalendarError):
    """
    Expansion stopped at the iteration ceiling.

    ``result`` keeps the partial, correctly ordered occurrences so callers
    can use them or retry with a narrower window.
    """

    def __init__(self, result):
        self.result = result
        ids = ', '.join(result.truncated_definitions)
        super().__init__(f'Expansion truncated for event(s): {ids}')

    @property
    def occurrences(self):
        return self.result.occurrences


def api_exception_handler(exc, context):
    """Map calendar errors to HTTP responses; defer everything else to DRF."""
    if isinstance(exc, DjangoValidationError):
        return Response(as_serializer_error(exc), status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, InvalidWindowError):
        return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, EventNotFoundError):
        return Response({'detail': str(exc)}, status=status.HTTP_404_NOT_FOUND)

    if isinstance(exc, StoreError):
        logger.error("Event store request failed: %s", exc)
        return Response(
            {'detail': 'The event store is unavailable.', 'error': str(exc)},
            status=status.HTTP_502_BAD_GATEWAY,
        )

    return exception_handler(exc, context)
