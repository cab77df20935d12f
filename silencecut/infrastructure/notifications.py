"""
Job notification emails.

Delivery goes through the Resend HTTP API. Senders raise on failure; the
job executor decides what a failure means (it only logs it).
"""
import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple

import requests

logger = logging.getLogger(__name__)


class TemplateKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Notification:
    recipient: str
    template_kind: TemplateKind
    payload: Dict[str, Any] = field(default_factory=dict)


class NotificationSender(Protocol):
    def send(self, notification: Notification) -> None:
        ...


def render_notification(notification: Notification) -> Tuple[str, str, str]:
    """Return (subject, text, html) for a notification."""
    payload = notification.payload
    name = payload.get("user_name") or "there"
    filename = payload.get("filename", "your video")
    safe_name = html.escape(str(name))
    safe_filename = html.escape(str(filename))
    job_url = payload.get("job_url")
    link_text = f"\n\nView the job: {job_url}" if job_url else ""
    link_html = f'<p><a href="{html.escape(str(job_url), quote=True)}">View the job</a></p>' if job_url else ""

    if notification.template_kind is TemplateKind.COMPLETED:
        url = payload.get("download_url", "")
        hours = max(1, int(payload.get("expires_in_seconds", 86400)) // 3600)
        subject = f'Your video "{filename}" is ready!'
        text = (
            f"Hi {name},\n\n"
            f"Your video {filename} has been processed. We removed the silent parts "
            f"and stitched it back together.\n\nDownload: {url}\n\n"
            f"This link expires in {hours} hours."
            f"{link_text}"
        )
        body = (
            f"<p>Hi {safe_name},</p>"
            f"<p>Your video <strong>{safe_filename}</strong> has been processed and is ready to download.</p>"
            f"<p>We removed the silent parts and stitched your video back together.</p>"
            f'<p><a href="{html.escape(str(url), quote=True)}">Download your video</a></p>'
            f"<p>This download link will expire in {hours} hours.</p>"
            f"{link_html}"
        )
        return subject, text, body

    error = payload.get("error", "Unknown error")
    subject = f'Failed to process "{filename}"'
    text = (
        f"Hi {name},\n\n"
        f"We could not process your video {filename}.\n\nError: {error}\n\n"
        "Your credit has been refunded. Please try again, or contact support if the problem persists."
        f"{link_text}"
    )
    body = (
        f"<p>Hi {safe_name},</p>"
        f"<p>Unfortunately, we encountered an error while processing <strong>{safe_filename}</strong>.</p>"
        f"<p><strong>Error:</strong> {html.escape(str(error))}</p>"
        "<p>Your credit has been refunded. Please try uploading your video again, "
        "or contact support if the problem persists.</p>"
        f"{link_html}"
    )
    return subject, text, body


class ResendEmailSender:
    """Send notification emails with the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        timeout_seconds: float = 10.0,
        base_url: str = "https://api.resend.com",
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._from_address = from_address
        self._timeout = timeout_seconds
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def send(self, notification: Notification) -> None:
        subject, text, body = render_notification(notification)
        resp = self._session.post(
            f"{self._base_url}/emails",
            json={
                "from": self._from_address,
                "to": [notification.recipient],
                "subject": subject,
                "text": text,
                "html": body,
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
        )
        resp.raise_for_status()
        logger.info(
            "Sent %s email to %s (id=%s)",
            notification.template_kind.value,
            notification.recipient,
            resp.json().get("id") if resp.content else None,
        )


class NullNotificationSender:
    """Drops notifications; used when no email provider is configured."""

    def send(self, notification: Notification) -> None:
        logger.debug(
            "Notifications disabled; dropping %s email to %s",
            notification.template_kind.value,
            notification.recipient,
        )
