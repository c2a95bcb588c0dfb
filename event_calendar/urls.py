"""
URL configuration for event_calendar project.
"""
from django.urls import path, include

urlpatterns = [
    path('api/', include('events.urls')),
]
