"""Best-effort webhook notifications for students who need a mentor.

When a check-in fails, the external workflow (an n8n flow in the reference
deployment) receives a JSON event carrying the intervention id so a mentor can
review it and later call ``/assign-intervention``. Delivery is fire-and-forget:
it runs off the request path, is attempted once, and failures are only logged.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Set

import requests

from errors import NotificationError
from schemas import NotificationEvent

LOGGER = logging.getLogger("mentorgate.notify")


class Notifier:
    """Disabled notifier; used when no webhook URL is configured."""

    enabled = False

    def notify(self, event: NotificationEvent) -> None:
        LOGGER.debug(
            "Notifier disabled; skipping event for student %s (intervention %s)",
            event.student_id,
            event.intervention_id,
        )


class WebhookNotifier(Notifier):
    enabled = True

    def __init__(self, url: str, *, timeout: float = 5.0, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._tasks: Set[asyncio.Task] = set()

    def send(self, payload: Dict[str, Any]) -> None:
        """POST ``payload`` once, raising :class:`NotificationError` on any failure."""
        try:
            response = requests.post(
                self.url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationError(f"webhook call failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise NotificationError(f"webhook responded with status {response.status_code}")

    def _deliver(self, payload: Dict[str, Any]) -> None:
        try:
            self.send(payload)
        except NotificationError as exc:
            LOGGER.warning(
                "Webhook notification for student %s failed: %s",
                payload.get("student_id"),
                exc,
            )
            return
        LOGGER.info(
            "Webhook notified for student %s (intervention %s)",
            payload.get("student_id"),
            payload.get("intervention_id"),
        )

    def notify(self, event: NotificationEvent) -> None:
        payload = event.to_payload()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            task = loop.create_task(asyncio.to_thread(self._deliver, payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            threading.Thread(target=self._deliver, args=(payload,), daemon=True).start()


def build_notifier(url: Optional[str], *, timeout: float = 5.0) -> Notifier:
    if not url:
        LOGGER.info("N8N_WEBHOOK_URL not set; notifications disabled")
        return Notifier()
    return WebhookNotifier(url, timeout=timeout)
