"""
Notification Sinks — fan workflow events out to the outside world.

Events (one per affected document, plus member_id for assignment events):
    document.created, assignment.submitted, assignment.reviewed,
    document.status.changed, document.deleted

Sinks:
    LoggingNotificationSink  — stdlib logger only (default)
    WebhookNotificationSink  — JSON POST via httpx, X-API-Key auth
    NullNotificationSink     — discards everything
    RecordingNotificationSink — keeps events in memory (tests, dry runs)

NotificationDispatcher is handed the events collected during a unit of work
after it commits. Delivery is best-effort: a failing sink is logged to
notifications/execution and never surfaces to the caller.

Config:
    clubdocs.yaml → notifications.sink, webhook_url, timeout_seconds, api_key
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

from clubdocs.engine.config import NotificationsConfig
from clubdocs.engine.errors import ClubDocsConfigError, ClubDocsIntegrationError
from clubdocs.engine.logging import log, log_notification_failure

logger = logging.getLogger("clubdocs.integrations.notifications")

DOCUMENT_CREATED = "document.created"
ASSIGNMENT_SUBMITTED = "assignment.submitted"
ASSIGNMENT_REVIEWED = "assignment.reviewed"
DOCUMENT_STATUS_CHANGED = "document.status.changed"
DOCUMENT_DELETED = "document.deleted"

EVENT_TYPES = (
    DOCUMENT_CREATED,
    ASSIGNMENT_SUBMITTED,
    ASSIGNMENT_REVIEWED,
    DOCUMENT_STATUS_CHANGED,
    DOCUMENT_DELETED,
)


@dataclass(frozen=True)
class NotificationEvent:
    event_type: str
    document_id: int
    club_id: int
    member_id: Optional[int] = None
    actor_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:16]}")
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "event_id": self.event_id,
            "event": self.event_type,
            "document_id": self.document_id,
            "club_id": self.club_id,
            "occurred_at": self.occurred_at,
        }
        if self.member_id is not None:
            data["member_id"] = self.member_id
        if self.actor_id is not None:
            data["actor_id"] = self.actor_id
        if self.details:
            data["details"] = self.details
        return data


class NotificationSink(Protocol):
    name: str

    def send(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationSink:
    name = "log"

    def send(self, event: NotificationEvent) -> None:
        logger.info(f"Notification {event.event_type}: {event.to_dict()}")


class NullNotificationSink:
    name = "none"

    def send(self, event: NotificationEvent) -> None:
        return None


class RecordingNotificationSink:
    """Collects events in memory."""

    name = "recording"

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def send(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


class WebhookNotificationSink:
    """
    POSTs each event as JSON to a single webhook URL.

    The event id doubles as X-Idempotency-Key so receivers can drop
    duplicates. A 2xx response is success; anything else raises.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self._url = url
        self._api_key = api_key
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0)),
            follow_redirects=True,
        )

    def send(self, event: NotificationEvent) -> None:
        headers = {"X-Idempotency-Key": event.event_id}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        try:
            response = self._client.post(self._url, json=event.to_dict(), headers=headers)
        except httpx.HTTPError as e:
            raise ClubDocsIntegrationError(
                f"Webhook unreachable: {e}",
                sink=self.name,
                document_id=event.document_id,
                club_id=event.club_id,
            ) from e
        if response.status_code >= 300:
            raise ClubDocsIntegrationError(
                f"Webhook returned {response.status_code}",
                sink=self.name,
                status_code=response.status_code,
                response_body=response.text[:500],
                document_id=event.document_id,
                club_id=event.club_id,
            )

    def close(self) -> None:
        self._client.close()


class NotificationDispatcher:
    """Delivers committed events to a sink; failures are logged, not raised."""

    def __init__(self, sink: NotificationSink):
        self._sink = sink

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        """Returns the number of events the sink accepted."""
        delivered = 0
        for event in events:
            try:
                self._sink.send(event)
                delivered += 1
            except Exception as e:
                sink_name = getattr(self._sink, "name", type(self._sink).__name__)
                logger.error(
                    f"Notification {event.event_type} for document {event.document_id} "
                    f"failed on sink '{sink_name}': {e}"
                )
                log(log_notification_failure(
                    event_type=event.event_type,
                    sink=sink_name,
                    document_id=event.document_id,
                    club_id=event.club_id,
                    member_id=event.member_id,
                    error=str(e),
                ))
        return delivered


def build_notification_sink(config: NotificationsConfig) -> NotificationSink:
    """Instantiate the sink named by notifications.sink."""
    if config.sink == "none":
        return NullNotificationSink()
    if config.sink == "webhook":
        if not config.webhook_url:
            raise ClubDocsConfigError("notifications.sink is 'webhook' but webhook_url is not set")
        return WebhookNotificationSink(
            url=config.webhook_url,
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
        )
    return LoggingNotificationSink()
