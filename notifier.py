"""
Outgoing email

Mail goes out through Resend on a background thread so checkout never
waits on the provider.
"""
import threading
from typing import Dict, Optional

import resend
import structlog

from errors import NotificationError

logger = structlog.get_logger(__name__)


class EmailNotifier:
    def __init__(self, api_key: Optional[str], sender: str, background: bool = True):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.background = background

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            raise NotificationError("Resend API key is not configured.")
        if not to:
            raise NotificationError("Recipient address is missing.")

        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if not self.background:
            self._deliver(payload)
            return
        try:
            threading.Thread(target=self._deliver_logged, args=(payload,), daemon=True).start()
        except RuntimeError as exc:
            raise NotificationError(f"Could not start mail thread: {exc}") from exc

    def _deliver(self, payload: Dict[str, object]) -> None:
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            raise NotificationError(str(exc)) from exc
        if not isinstance(response, dict) or not response.get("id"):
            raise NotificationError(f"Unexpected mail provider response: {response}")
        logger.info("Email sent", to=payload["to"], subject=payload["subject"], message_id=response["id"])

    def _deliver_logged(self, payload: Dict[str, object]) -> None:
        try:
            self._deliver(payload)
        except NotificationError as exc:
            logger.warning("Email delivery failed", to=payload["to"], error=exc.message)
