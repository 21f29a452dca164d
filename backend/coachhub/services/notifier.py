# Overview: Outbound notification hook for invoice events.

"""
Notifier

The invoice engine hands events ("invoice.created", "invoice.reminder_sent",
"invoice.paid") to whatever notifier is installed at
app.extensions["notifier"]. Delivery is fire-and-forget: a failing notifier is
logged and never fails the operation that produced the event.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "notifier"


class Notifier(Protocol):
    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("Notification %s", event_type, extra={"event_type": event_type, "payload": payload})


def get_notifier() -> Notifier:
    notifier = current_app.extensions.get(EXTENSION_KEY)
    if notifier is None:
        notifier = LoggingNotifier()
        current_app.extensions[EXTENSION_KEY] = notifier
    return notifier


def notify_safely(event_type: str, payload: dict[str, Any]) -> None:
    try:
        get_notifier().notify(event_type, payload)
    except Exception:
        logger.exception("Notifier failed for %s", event_type, extra={"event_type": event_type})
