"""Email notifications sent at the end of a CI/CD pipeline run."""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Literal, Optional

from .config import Settings

logger = logging.getLogger("userservice.notifications")

RunStatus = Literal["success", "failure"]

_STATUS_LABELS = {
    "success": "succeeded",
    "failure": "FAILED",
}


class NotificationError(RuntimeError):
    """Raised when a pipeline notification cannot be delivered."""


@dataclass(frozen=True)
class PipelineRun:
    """Identity and outcome of the pipeline run being reported."""

    job: str
    status: RunStatus
    log_url: str
    commit: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status not in _STATUS_LABELS:
            raise ValueError(f"Unknown pipeline status '{self.status}'")
        if not self.job.strip():
            raise ValueError("Job name must not be empty")


def build_message(run: PipelineRun, *, sender: str, recipient: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = f"[{run.job}] pipeline {_STATUS_LABELS[run.status]}"
    message["From"] = sender
    message["To"] = recipient

    lines = [
        f"Job: {run.job}",
        f"Status: {run.status}",
    ]
    if run.commit:
        lines.append(f"Commit: {run.commit}")
    lines.append(f"Logs: {run.log_url}")
    if run.status == "failure":
        lines.extend(["", "The deployed container was not rolled back; check the logs above."])
    message.set_content("\n".join(lines) + "\n")
    return message


def send_notification(
    run: PipelineRun,
    settings: Settings,
    *,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    timeout: float = 30.0,
) -> EmailMessage:
    """Deliver exactly one notification for ``run``. Delivery is not retried."""

    recipient = settings.notification_recipient
    if not recipient:
        raise NotificationError("No notification recipient configured (NOTIFICATION_EMAIL)")
    if not settings.smtp_password:
        raise NotificationError("No SMTP credential configured (SMTP_PASSWORD)")
    if not settings.smtp_host:
        raise NotificationError("No SMTP host configured (SMTP_HOST)")

    username = settings.smtp_username or recipient
    sender = settings.notification_sender or username
    message = build_message(run, sender=sender, recipient=recipient)

    try:
        with smtp_factory(settings.smtp_host, settings.smtp_port, timeout=timeout) as client:
            client.starttls()
            client.login(username, settings.smtp_password)
            client.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationError(f"Failed to deliver notification to {recipient}: {exc}") from exc

    logger.info("Sent %s notification for %s to %s", run.status, run.job, recipient)
    return message


__all__ = ["NotificationError", "PipelineRun", "build_message", "send_notification"]
