"""
Django settings for event_calendar project.

Deployment values come from environment variables.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'insecure-development-key')

DEBUG = os.environ.get('DJANGO_DEBUG', 'false').lower() == 'true'

ALLOWED_HOSTS = [
    host for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if host
]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'events',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'event_calendar.urls'

# Event definitions live in the content API; the database only backs
# Django's own bookkeeping.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('DJANGO_TIME_ZONE', 'America/Mexico_City')
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'EXCEPTION_HANDLER': 'events.exceptions.api_exception_handler',
    # Authentication is handled by the external identity provider.
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

EVENTS_CMS = {
    'BASE_URL': os.environ.get('EVENTS_CMS_BASE_URL', 'http://localhost:3000'),
    'TOKEN': os.environ.get('EVENTS_CMS_TOKEN'),
    'TIMEOUT': float(os.environ.get('EVENTS_CMS_TIMEOUT', '10')),
    'PAGE_LIMIT': int(os.environ.get('EVENTS_CMS_PAGE_LIMIT', '100')),
}

EVENTS_MAX_EXPANSION_ITERATIONS = int(os.environ.get('EVENTS_MAX_EXPANSION_ITERATIONS', '365'))
EVENTS_UPCOMING_DAYS = int(os.environ.get('EVENTS_UPCOMING_DAYS', '30'))

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'events': {
            'handlers': ['console'],
            'level': os.environ.get('EVENTS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
