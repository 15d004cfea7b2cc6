"""Event publisher - pushes progress events to notification and activity collaborators."""
import logging
from typing import Optional

import httpx

from app.config import settings
from app.models.progress import ProgressEvent


logger = logging.getLogger(__name__)


class EventPublisher:
    """Delivers one event to every configured collaborator webhook.

    Collaborators own their delivery retries. A failed push is logged and
    never raised, since the ledger write it reports is already committed.
    """

    def __init__(
        self,
        urls: list[str],
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.urls = urls
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "EventPublisher":
        return cls(urls=settings.publisher_urls, timeout=settings.publisher_timeout_seconds)

    async def publish(self, event: ProgressEvent) -> int:
        """
        Push an event to all collaborators.

        Args:
            event: Event to deliver

        Returns:
            Number of collaborators that accepted the event
        """
        logger.info("Publishing %s for goal %s", event.event_type, event.goal_id)
        if not self.urls:
            return 0

        delivered = 0
        body = event.model_dump(mode="json")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for url in self.urls:
                try:
                    response = await client.post(url, json=body)
                    response.raise_for_status()
                    delivered += 1
                except httpx.HTTPError as e:
                    logger.warning(
                        "Failed to deliver %s for goal %s to %s: %s",
                        event.event_type,
                        event.goal_id,
                        url,
                        e,
                    )
        return delivered


# Global publisher instance
publisher = EventPublisher.from_settings()


async def get_event_publisher() -> EventPublisher:
    """Dependency to get the event publisher."""
    return publisher
