"""Event publishing for progressive plan-step and text updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from ..settings import EVENTS_URL

logger = logging.getLogger(__name__)


@runtime_checkable
class EventPublisher(Protocol):
    """Channel that pushes run updates to an external consumer (e.g. a UI)."""

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        ...


@dataclass
class EventsConfig:
    """Configuration for the HTTP event publisher."""

    url: str = field(default_factory=lambda: EVENTS_URL)
    timeout: float = 10.0
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_configured(self) -> bool:
        """Check if an endpoint is configured."""
        return bool(self.url)


class HTTPEventPublisher:
    """HTTP client that posts events as JSON to a configured endpoint.

    Each event is sent as ``{"type": ..., "data": ..., "timestamp": ...}``.
    Without a configured URL the publisher stays disabled and drops events.
    """

    def __init__(self, config: EventsConfig | None = None):
        """Initialize the publisher.

        Args:
            config: Endpoint configuration. If None, loads from environment.
        """
        self.config = config or EventsConfig()
        self._client: httpx.AsyncClient | None = None

    @property
    def enabled(self) -> bool:
        """Check if publishing is active."""
        return self.config.is_configured and self._client is not None

    async def connect(self) -> None:
        """Open the HTTP client."""
        if not self.config.is_configured:
            logger.warning("Events URL not configured (THINKLOOP_EVENTS_URL not set), publishing disabled")
            return

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout),
            headers={"Content-Type": "application/json", **self.config.headers},
        )
        logger.info(f"Publishing events to {self.config.url}")

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Event publisher disconnected")

    async def __aenter__(self) -> "HTTPEventPublisher":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        """Post one event.

        Args:
            event_type: Event name, e.g. "plan_step_create"
            data: JSON-serializable payload
        """
        if not self._client:
            return

        try:
            response = await self._client.post(
                self.config.url,
                json={
                    "type": event_type,
                    "data": data,
                    "timestamp": datetime.now().isoformat(),
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Event publish failed: {e.response.text}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"Event publish error: {e}")
            raise


class ListEventPublisher:
    """Publisher that records events in memory, for tests and the CLI."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        self.events.append((event_type, data))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [data for kind, data in self.events if kind == event_type]
