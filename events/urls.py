"""
URL routing for the events API.
"""

from django.urls import path
from .views import (
    EventListCreateView,
    EventDetailView,
    EventCompleteView,
    EventExceptionView,
    OccurrenceListView,
    UpcomingOccurrenceListView,
    ExpandView,
)

urlpatterns = [
    path('events/', EventListCreateView.as_view(), name='event-list-create'),
    path('events/<str:pk>/', EventDetailView.as_view(), name='event-detail'),
    path('events/<str:pk>/complete/', EventCompleteView.as_view(), name='event-complete'),
    path('events/<str:pk>/exceptions/', EventExceptionView.as_view(), name='event-exceptions'),
    path('occurrences/', OccurrenceListView.as_view(), name='occurrence-list'),
    path('occurrences/upcoming/', UpcomingOccurrenceListView.as_view(), name='occurrence-upcoming'),
    path('expand/', ExpandView.as_view(), name='expand'),
]
