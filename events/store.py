"""
Client for the remote content API that stores event definitions.

The store owns persistence; this module only translates between its REST
documents and EventDefinition snapshots. Every request carries a timeout,
and any failure (connection error, timeout, HTTP error, malformed record)
is raised as a StoreError subclass instead of degrading to an empty result.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings

from .exceptions import EventNotFoundError, FetchError, StoreError
from .models import EventDefinition
from .queries import DEFAULT_PAGE_LIMIT, EventQuery
from .serializers import EventDefinitionSerializer


logger = logging.getLogger(__name__)

# (connect, read) seconds
DEFAULT_TIMEOUT = (5, 30)


class CMSEventStore:
    """Event definition store backed by the content API's events collection."""

    collection = 'events'

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout=DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    @property
    def collection_url(self) -> str:
        return f'{self.base_url}/api/{self.collection}'

    def find(self, query: EventQuery) -> List[EventDefinition]:
        """
        Get every definition matching a query, following pagination.

        Raises:
            FetchError: If any page cannot be fetched or parsed
        """
        definitions = []
        page = query
        while True:
            body = self._request('GET', self.collection_url, params=page.to_params())
            definitions.extend(self._parse(doc) for doc in body.get('docs', []))
            if not body.get('hasNextPage'):
                break
            page = page.page(body.get('nextPage') or page.page_number + 1)

        logger.debug("Fetched %d event definition(s) for %r", len(definitions), query)
        return definitions

    def get(self, event_id: str) -> EventDefinition:
        """
        Raises:
            EventNotFoundError: If the event does not exist
            FetchError: If the event cannot be fetched or parsed
        """
        body = self._request('GET', f'{self.collection_url}/{event_id}', event_id=event_id)
        return self._parse(body)

    def create(self, document: Dict[str, Any]) -> EventDefinition:
        body = self._request('POST', self.collection_url, json=document)
        return self._parse(body.get('doc', body))

    def update(self, event_id: str, changes: Dict[str, Any]) -> EventDefinition:
        body = self._request(
            'PATCH', f'{self.collection_url}/{event_id}', event_id=event_id, json=changes
        )
        return self._parse(body.get('doc', body))

    def delete(self, event_id: str) -> None:
        self._request('DELETE', f'{self.collection_url}/{event_id}', event_id=event_id)

    def _request(self, method: str, url: str, event_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Send a request and decode its JSON body, raising StoreError on failure."""
        error_class = FetchError if method == 'GET' else StoreError
        kwargs.setdefault('timeout', self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            logger.error("%s %s timed out: %s", method, url, exc)
            raise error_class(f'{method} {url} timed out') from exc
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise error_class(f'{method} {url} failed: {exc}') from exc

        if response.status_code == 404 and event_id is not None:
            raise EventNotFoundError(event_id)

        if response.status_code >= 400:
            logger.error("%s %s returned HTTP %s", method, url, response.status_code)
            raise error_class(
                f'{method} {url} returned HTTP {response.status_code}',
                status_code=response.status_code,
            )

        if method == 'DELETE' or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as exc:
            logger.error("%s %s returned a non-JSON body", method, url)
            raise error_class(f'{method} {url} returned a non-JSON body') from exc

    def _parse(self, document: Dict[str, Any]) -> EventDefinition:
        serializer = EventDefinitionSerializer(data=document)
        if not serializer.is_valid():
            logger.error("Malformed event record %s: %s", document.get('id'), serializer.errors)
            raise FetchError(f"Malformed event record {document.get('id')}: {serializer.errors}")
        return serializer.validated_data


def get_event_store() -> CMSEventStore:
    """Build the configured event store from settings.EVENTS_CMS."""
    config = settings.EVENTS_CMS
    return CMSEventStore(
        base_url=config['BASE_URL'],
        token=config.get('TOKEN'),
        timeout=config.get('TIMEOUT', DEFAULT_TIMEOUT),
    )


def default_query() -> EventQuery:
    return EventQuery(limit=getattr(settings, 'EVENTS_CMS', {}).get('PAGE_LIMIT', DEFAULT_PAGE_LIMIT))
