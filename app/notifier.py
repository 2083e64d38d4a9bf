"""
Best-effort alerts for things a human should look at: dropped actions and
Last.fm authentication trouble.

- WebhookNotifier POSTs JSON to NOTIFY_WEBHOOK_URL (Slack/Discord-compatible).
- GotifyNotifier POSTs to GOTIFY_URL/message with an app token.
- Alerter fans out to both; failures are logged at DEBUG and never raised.
"""

from __future__ import annotations
import logging
import os
from typing import Mapping

import requests

log = logging.getLogger("notifier")

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}

APP_TAG = "MPD→Last.fm"


def _level(name: str, default: int = 30) -> int:
    return _LEVELS.get((name or "").upper(), default)


class WebhookNotifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = APP_TAG):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = _level(min_level)
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.webhook_url or _level(level) < self.min_level:
            return
        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            requests.post(self.webhook_url, json=payload, timeout=5)
        except requests.RequestException as e:
            log.debug("Webhook send failed: %s", e)


class GotifyNotifier:
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 default_priority: int = 5, app_tag: str = APP_TAG):
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.min_level = _level(min_level)
        self.default_priority = default_priority
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.url or not self.token or _level(level) < self.min_level:
            return
        body = {
            "title": f"{self.app_tag}: {title}",
            "message": message if not extra else f"{message}\n\n{extra}",
            "priority": self.default_priority,
        }
        try:
            requests.post(f"{self.url}/message", json=body,
                          headers={"X-Gotify-Key": self.token}, timeout=5)
        except requests.RequestException as e:
            log.debug("Gotify send failed: %s", e)


class Alerter:
    """Callable fan-out: alert(level, title, message, extra=None)."""

    def __init__(self, *notifiers):
        self.notifiers = notifiers

    def __call__(self, level: str, title: str, message: str, extra: dict | None = None):
        for n in self.notifiers:
            n.send(level, title, message, extra)


def from_env(environ: Mapping[str, str] = os.environ) -> Alerter:
    app_tag = environ.get("APP_TAG", APP_TAG)
    webhook = WebhookNotifier(
        webhook_url=environ.get("NOTIFY_WEBHOOK_URL"),
        min_level=environ.get("NOTIFY_MIN_LEVEL", "WARNING"),
        app_tag=app_tag,
    )
    try:
        priority = int(environ.get("GOTIFY_PRIORITY", "5"))
    except ValueError:
        priority = 5
    gotify = GotifyNotifier(
        environ.get("GOTIFY_URL"),
        environ.get("GOTIFY_TOKEN"),
        min_level=environ.get("GOTIFY_MIN_LEVEL", "WARNING"),
        default_priority=priority,
        app_tag=app_tag,
    )
    return Alerter(webhook, gotify)
