"""Outbound email for lending events.

The active notifier lives on ``app.extensions["notifier"]`` so tests (or a
different mail provider) can swap it without touching the lending code.
Sending is best-effort: ``send_notification`` never raises.
"""

import html
import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)

EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background-color: #1c1f40; color: white; padding: 20px; text-align: center;">
      <h1>University Library</h1>
    </div>
    <div style="padding: 20px; border: 1px solid #ddd;">
      <h2>{subject}</h2>
      {content}
    </div>
  </body>
</html>
"""


def render_email(subject, body):
    paragraphs = "".join(
        f"<p>{html.escape(line)}</p>" for line in body.split("\n") if line.strip()
    )
    return EMAIL_TEMPLATE.format(subject=html.escape(subject), content=paragraphs)


class Notifier:
    def send(self, to_email, subject, body):
        raise NotImplementedError


class LogNotifier(Notifier):
    """Used when no mail API is configured."""

    def send(self, to_email, subject, body):
        logger.info("Email to %s: %s", to_email, subject)


class HttpEmailNotifier(Notifier):
    def __init__(self, api_url, token, sender, timeout=10):
        self.api_url = api_url
        self.token = token
        self.sender = sender
        self.timeout = timeout

    def send(self, to_email, subject, body):
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        r = requests.post(
            self.api_url,
            json={
                "from": self.sender,
                "to": [to_email],
                "subject": subject,
                "html": render_email(subject, body),
            },
            headers=headers,
            timeout=self.timeout,
        )
        r.raise_for_status()


def init_notifier(app, notifier=None):
    if notifier is None:
        if app.config.get("MAIL_API_URL"):
            notifier = HttpEmailNotifier(
                app.config["MAIL_API_URL"],
                app.config.get("MAIL_API_TOKEN"),
                app.config["MAIL_SENDER"],
                timeout=app.config.get("MAIL_TIMEOUT", 10),
            )
        else:
            notifier = LogNotifier()
    app.extensions["notifier"] = notifier
    return notifier


def send_notification(to_email, subject, body):
    """Send one email; failures are logged and reported as False."""
    if not to_email:
        return False
    notifier = current_app.extensions["notifier"]
    try:
        notifier.send(to_email, subject, body)
    except Exception:
        logger.exception("Error sending %r to %s", subject, to_email)
        return False
    return True
