"""Notification sender collaborator and bulk-run summary emails.

Building a message and delivering it are separate.  ``BulkSummaryNotifier``
builds an :class:`EmailPayload`; a :class:`NotificationSender` delivers it.
``BufferedSender`` holds payloads until :meth:`BufferedSender.flush`;
``SesSender`` hands them to AWS SES.
"""

from __future__ import annotations

import asyncio
import html
import logging
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from contractforge.models.bulk import BulkResult

logger = logging.getLogger(__name__)


class EmailPayload(BaseModel):
    """An email ready for delivery."""

    model_config = ConfigDict(frozen=True)

    recipient: str
    sender: str
    subject: str
    body_text: str
    body_html: str = ""
    headers: dict[str, str] = {}


@runtime_checkable
class NotificationSender(Protocol):
    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        """Deliver one message and return its message id."""
        ...


class BufferedSender:
    """Queues messages instead of sending them.

    Call ``flush()`` to retrieve and clear pending payloads.
    """

    def __init__(self, sender: str = "contracts@localhost") -> None:
        self._sender = sender
        self._pending_payloads: list[EmailPayload] = []

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        message_id = f"<{uuid.uuid4().hex}@contractforge>"
        self._pending_payloads.append(
            EmailPayload(
                recipient=to,
                sender=self._sender,
                subject=subject,
                body_text=text_body,
                body_html=html_body,
                headers={"Message-ID": message_id},
            )
        )
        logger.debug("BufferedSender: queued %r for %s", subject, to)
        return message_id

    def flush(self) -> list[EmailPayload]:
        payloads = list(self._pending_payloads)
        self._pending_payloads.clear()
        return payloads

    @property
    def pending_count(self) -> int:
        return len(self._pending_payloads)


class SesSender:
    """Delivers through AWS SES; the blocking boto3 call runs in a thread.

    Parameters
    ----------
    sender:
        Verified SES source address.
    region:
        AWS region used when no client is supplied.
    ses_client:
        Pre-built boto3 SES client, for tests or shared sessions.
    """

    def __init__(self, sender: str, *, region: str = "us-east-1", ses_client: Any = None) -> None:
        self.sender = sender
        self.region = region
        self._ses_client = ses_client

    @property
    def ses_client(self) -> Any:
        if self._ses_client is None:
            import boto3

            self._ses_client = boto3.client("ses", region_name=self.region)
        return self._ses_client

    def _build(self, to: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(text_body, "plain"))
        if html_body:
            message.attach(MIMEText(html_body, "html"))
        return message

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        from botocore.exceptions import ClientError

        message = self._build(to, subject, html_body, text_body)
        try:
            response = await asyncio.to_thread(
                self.ses_client.send_raw_email,
                Source=self.sender,
                Destinations=[to],
                RawMessage={"Data": message.as_string()},
                Tags=[{"Name": "email_type", "Value": "bulk_summary"}],
            )
        except ClientError as exc:
            logger.error("AWS SES rejected %r for %s: %s", subject, to, exc)
            raise
        message_id = response.get("MessageId", "")
        logger.info("Sent %r to %s. SES MessageId: %s", subject, to, message_id)
        return message_id


# ---------------------------------------------------------------------------
# Bulk summary
# ---------------------------------------------------------------------------


class BulkSummaryNotifier:
    """Formats a bulk generation result and hands it to a sender."""

    def __init__(self, sender: NotificationSender, *, from_address: str = "contracts@localhost") -> None:
        self.sender = sender
        self.from_address = from_address

    def build(self, recipient: str, result: BulkResult) -> EmailPayload:
        subject = (
            f"[contractforge] Bulk generation: {result.successful}/{result.total_processed} succeeded"
        )
        lines = [
            "Bulk contract generation finished",
            "=" * 40,
            f"Processed:  {result.total_processed}",
            f"Successful: {result.successful}",
            f"Failed:     {result.failed}",
        ]
        failures = [r for r in result.results if not r.success]
        if failures:
            lines.append("")
            lines.append("Failures:")
            lines.extend(f"  - {r.id}: {r.error}" for r in failures)
        lines.append("")
        lines.append("-- contractforge")

        rows = "".join(
            f"<tr><td>{html.escape(r.id)}</td><td>{html.escape(r.error or '')}</td></tr>"
            for r in failures
        )
        body_html = (
            f"<p>Processed <strong>{result.total_processed}</strong> contracts: "
            f"{result.successful} succeeded, {result.failed} failed.</p>"
        )
        if rows:
            body_html += f"<table><tr><th>Item</th><th>Error</th></tr>{rows}</table>"

        return EmailPayload(
            recipient=recipient,
            sender=self.from_address,
            subject=subject,
            body_text="\n".join(lines),
            body_html=body_html,
        )

    async def notify(self, recipient: str, result: BulkResult) -> str:
        payload = self.build(recipient, result)
        return await self.sender.send(
            payload.recipient, payload.subject, payload.body_html, payload.body_text
        )
