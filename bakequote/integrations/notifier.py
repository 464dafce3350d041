import logging
import random
import time
from typing import Any, Dict, Optional

import click
import requests
from flask import current_app
from flask.cli import with_appcontext

from bakequote import db
from bakequote.events import pending_events
from bakequote.models import utcnow


class NotifierClient:
    """Posts quote events to the email-notification service."""

    max_attempts = 4

    def __init__(self, url: str, secret: Optional[str] = None, timeout: int = 10) -> None:
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if secret:
            self.session.headers["Authorization"] = f"Bearer {secret}"

    def post(self, payload: Dict[str, Any]) -> None:
        """POST one event, backing off on network errors, 429 and 5xx."""
        for attempt in range(1, self.max_attempts + 1):
            last = attempt == self.max_attempts
            try:
                r = self.session.post(self.url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                if last:
                    raise
                logging.warning("notifier unreachable (attempt %s): %s", attempt, e)
                self._pause(attempt)
                continue
            if (r.status_code == 429 or r.status_code >= 500) and not last:
                logging.warning("notifier answered %s (attempt %s)", r.status_code, attempt)
                self._pause(attempt)
                continue
            r.raise_for_status()
            return

    @staticmethod
    def _pause(attempt: int) -> None:
        time.sleep(min(2 ** attempt, 30) + random.random())


def dispatch_pending(client: NotifierClient, limit: int = 100) -> Dict[str, int]:
    """Deliver undispatched events in order; stop at the first failure."""
    sent = failed = 0
    for event in pending_events(limit):
        body = {
            "id": event.id,
            "kind": event.kind,
            "baker_id": event.baker_id,
            "created_at": event.created_at.isoformat(),
            "data": event.payload,
        }
        try:
            client.post(body)
        except requests.RequestException as e:
            failed += 1
            logging.error("event %s (%s) not delivered: %s", event.id, event.kind, e)
            break
        event.dispatched_at = utcnow()
        db.session.commit()
        sent += 1
        logging.info("event %s (%s) delivered", event.id, event.kind)
    return {"sent": sent, "failed": failed}


@click.group("notify")
def notify_cli() -> None:
    """Quote notification commands."""


@notify_cli.command("dispatch")
@click.option("--limit", default=100, show_default=True, help="Max events to send")
@with_appcontext
def dispatch_command(limit: int) -> None:
    url = current_app.config.get("NOTIFY_WEBHOOK_URL")
    if not url:
        logging.warning("NOTIFY_WEBHOOK_URL is not set; nothing dispatched")
        return
    client = NotifierClient(
        url,
        secret=current_app.config.get("NOTIFY_WEBHOOK_SECRET"),
        timeout=current_app.config.get("NOTIFY_TIMEOUT", 10),
    )
    result = dispatch_pending(client, limit=limit)
    click.echo(f"sent={result['sent']} failed={result['failed']}")
