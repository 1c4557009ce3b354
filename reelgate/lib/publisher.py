"""
Publisher collaborators - where approved, admitted assets are handed off.
"""

import logging
from typing import List, Protocol

from reelgate.models.schedule import PublishRequest

logger = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """The external scheduler did not accept the request."""


class Publisher(Protocol):
    """Schedules a post with an external platform adapter."""

    async def schedule(self, request: PublishRequest) -> None:
        ...


class LoggingPublisher:
    """Dry-run publisher: logs and remembers requests, never posts."""

    def __init__(self):
        self.requests: List[PublishRequest] = []

    async def schedule(self, request: PublishRequest) -> None:
        self.requests.append(request)
        logger.info(
            f"[dry-run] {request.profile}: {request.asset_id} at {request.when_iso} "
            f"({request.file_url})"
        )
