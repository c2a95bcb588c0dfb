"""Views for the event calendar."""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .recurrence import expand, max_expansion_iterations
from .serializers import (
    CompletionSerializer,
    DateRangeQuerySerializer,
    EventCreateSerializer,
    EventDefinitionReadSerializer,
    EventListQuerySerializer,
    EventUpdateSerializer,
    ExceptionDateSerializer,
    ExpandRequestSerializer,
    UpcomingQuerySerializer,
    expansion_representation,
)


class EventListCreateView(APIView):
    """
    List a user's event definitions or create a new one.

    GET /api/events/?userId=X[&category=Y][&pending=true] - List definitions
    POST /api/events/ - Create a definition
    """

    def get(self, request):
        """List event definitions (not expanded)."""
        query_serializer = EventListQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        events = services.list_events(
            data['userId'],
            category=data.get('category'),
            pending=data['pending']
        )

        serializer = EventDefinitionReadSerializer(events, many=True)
        return Response(serializer.data)

    def post(self, request):
        """Create an event definition."""
        serializer = EventCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = services.create_event(serializer.validated_data)

        response_serializer = EventDefinitionReadSerializer(event)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class EventDetailView(APIView):
    """
    Retrieve, update, or delete an event definition.

    GET /api/events/{id}/ - Retrieve definition
    PATCH /api/events/{id}/ - Update definition
    DELETE /api/events/{id}/ - Delete definition
    """

    def get(self, request, pk):
        """Retrieve an event definition."""
        event = services.get_event(pk)
        serializer = EventDefinitionReadSerializer(event)
        return Response(serializer.data)

    def patch(self, request, pk):
        """Update an event definition."""
        serializer = EventUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        updated_event = services.update_event(pk, serializer.validated_data)

        response_serializer = EventDefinitionReadSerializer(updated_event)
        return Response(response_serializer.data)

    def delete(self, request, pk):
        """Delete an event definition."""
        services.delete_event(pk)

        return Response({
            'message': f'Event "{pk}" has been deleted.'
        }, status=status.HTTP_200_OK)


class EventCompleteView(APIView):
    """
    Mark an event (the whole series) as completed or pending.

    POST /api/events/{id}/complete/
    """

    def post(self, request, pk):
        """Set completion state."""
        serializer = CompletionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = services.set_completed(pk, serializer.validated_data['isCompleted'])

        response_serializer = EventDefinitionReadSerializer(event)
        return Response(response_serializer.data)


class EventExceptionView(APIView):
    """
    Skip a recurring event on one calendar date.

    POST /api/events/{id}/exceptions/
    """

    def post(self, request, pk):
        """Add an exception date."""
        serializer = ExceptionDateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = services.add_exception(pk, serializer.validated_data['date'])

        response_serializer = EventDefinitionReadSerializer(event)
        return Response(response_serializer.data)


class OccurrenceListView(APIView):
    """
    List a user's occurrences within a date range.

    GET /api/occurrences/?userId=U&start=X&end=Y
    """

    def get(self, request):
        """List occurrences within a date range."""
        query_serializer = DateRangeQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        result = services.list_occurrences(data['userId'], data['start'], data['end'])

        return Response(expansion_representation(result))


class UpcomingOccurrenceListView(APIView):
    """
    List a user's next uncompleted occurrences.

    GET /api/occurrences/upcoming/?userId=U[&limit=N]
    """

    def get(self, request):
        """List upcoming occurrences."""
        query_serializer = UpcomingQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        result = services.get_upcoming_occurrences(data['userId'], limit=data['limit'])

        return Response(expansion_representation(result))


class ExpandView(APIView):
    """
    Expand an inline event definition without touching the store.

    POST /api/expand/
    """

    def post(self, request):
        """Expand the posted definition over the posted window."""
        serializer = ExpandRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        result = expand(
            data['event'],
            data['start'],
            data['end'],
            data.get('maxIterations', max_expansion_iterations())
        )

        return Response(expansion_representation(result))
