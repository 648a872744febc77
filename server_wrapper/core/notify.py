"""Status notifications posted to a chat webhook."""

import logging
from dataclasses import dataclass
from typing import Any

import requests

from ..errors import NotifyError

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000


class EventKind:
    """Kinds of status event."""

    STARTED = "started"
    RESTARTED = "restarted"
    SYNC_FAILED = "sync_failed"


@dataclass
class StatusEvent:
    """A status update for the outside world."""

    kind: str
    details: str = ""

    @property
    def message(self) -> str:
        headline = {
            EventKind.STARTED: "Starting up server...",
            EventKind.RESTARTED: "Server closed! Restarting...",
            EventKind.SYNC_FAILED: "Synchronization failed.",
        }.get(self.kind, self.kind)
        if self.details:
            return f"{headline} {self.details}"
        return headline


class Notifier:
    """Delivers status events. Subclasses raise NotifyError on failure."""

    def notify(self, event: StatusEvent) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    """Used when no webhook is configured."""

    def notify(self, event: StatusEvent) -> None:
        logger.debug("Status: %s", event.message)


class WebhookNotifier(Notifier):
    """Posts Discord-compatible webhook payloads with mentions disabled."""

    def __init__(
        self,
        url: str,
        session: requests.Session | None = None,
        timeout: float = 10,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    @staticmethod
    def build_payload(event: StatusEvent) -> dict[str, Any]:
        """Build the JSON body for an event."""
        return {
            "content": event.message[:MAX_CONTENT_LENGTH],
            "allowed_mentions": {"parse": []},
        }

    def notify(self, event: StatusEvent) -> None:
        """Post the event to the webhook.

        Raises:
            NotifyError: On connection errors or non-2xx responses
        """
        try:
            response = self.session.post(
                self.url,
                json=self.build_payload(event),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotifyError(f"Failed to post to webhook: {e}") from e

        if not 200 <= response.status_code < 300:
            raise NotifyError(
                f"Webhook returned {response.status_code}: {response.text[:200]}"
            )


def create_notifier(webhook_url: str | None) -> Notifier:
    """Return a WebhookNotifier for *webhook_url*, or a NullNotifier."""
    if webhook_url:
        return WebhookNotifier(webhook_url)
    return NullNotifier()
