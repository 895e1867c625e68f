"""Notification delivery — one message to one recipient per call."""

import base64
import json
import logging
from collections import deque
from email.mime.text import MIMEText
from typing import Protocol

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from journal_digest.exceptions import ConfigurationError, NotifyError

logger = logging.getLogger(__name__)

SEND_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


class Notifier(Protocol):
    """Sends one message. Raises NotifyError on transport or configuration failure."""

    def notify(self, recipient: str, subject: str, body: str) -> None:
        ...


def _build_message(sender: str, recipient: str, subject: str, body: str) -> dict:
    """Encode a plain-text message in the Gmail API ``raw`` format."""
    msg = MIMEText(body, "plain", "utf-8")
    msg["To"] = recipient
    msg["Subject"] = subject
    if sender:
        msg["From"] = sender
    raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
    return {"raw": raw}


class GmailNotifier:
    """Sends digest mail through the Gmail API using stored OAuth user credentials.

    The token JSON is the one produced by ``scripts/gmail_auth.py``. It is
    parsed at construction so a bad token fails at start-up rather than on the
    first send.
    """

    def __init__(self, token_json: str, sender: str = ""):
        if not token_json:
            raise ConfigurationError("Gmail token not configured (GMAIL_TOKEN_JSON).")
        try:
            token_data = json.loads(token_json)
            self._credentials = Credentials.from_authorized_user_info(token_data, SEND_SCOPES)
        except (ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid Gmail token JSON: {e}") from e
        self.sender = sender
        self._service = None

    def _get_service(self):
        """Build the Gmail service lazily, refreshing the token if it expired."""
        try:
            if self._credentials.expired and self._credentials.refresh_token:
                self._credentials.refresh(Request())
            if self._service is None:
                self._service = build(
                    "gmail", "v1", credentials=self._credentials, cache_discovery=False
                )
            return self._service
        except GoogleAuthError as e:
            raise NotifyError(f"Gmail authentication failed: {e}") from e

    def notify(self, recipient: str, subject: str, body: str) -> None:
        service = self._get_service()
        message = _build_message(self.sender, recipient, subject, body)
        try:
            sent = service.users().messages().send(userId="me", body=message).execute()
        except HttpError as e:
            raise NotifyError(f"Gmail rejected message to {recipient}: {e}") from e
        except (OSError, GoogleAuthError) as e:
            raise NotifyError(f"Gmail send to {recipient} failed: {e}") from e
        logger.info("Sent digest to %s (message id %s)", recipient, sent.get("id", "?"))


class LogNotifier:
    """Development notifier: logs each message instead of sending it.

    Only the most recent ``keep`` messages are kept in ``sent``.
    """

    def __init__(self, keep: int = 100):
        self.sent: deque[tuple[str, str, str]] = deque(maxlen=keep)

    def notify(self, recipient: str, subject: str, body: str) -> None:
        logger.info("[dry-run] To: %s | Subject: %s | %s", recipient, subject, body)
        self.sent.append((recipient, subject, body))
