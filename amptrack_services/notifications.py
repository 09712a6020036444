"""
Email notifiers.

``SesNotifier`` sends through AWS SES with boto3: a plain ``send_email``
call without an attachment, ``send_raw_email`` with a MIME message when the
rendered PDF is attached.  ``DisabledNotifier`` stands in when credentials
are missing, so the send path reports the feature unavailable instead of
crashing.
"""

from __future__ import annotations

import re
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from amptrack_config.schema import NotificationSettings
from amptrack_kernel.domain.collaborators import NotificationResult
from amptrack_kernel.domain.dtos import DocumentInfo
from amptrack_kernel.logging_config import get_logger
from amptrack_services.rendering import DOCUMENT_HEADINGS, build_environment

logger = get_logger("services.email")

EMAIL_TEMPLATE = "email.html"

_TAG_RE = re.compile(r"<[^>]*>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def email_subject(document: DocumentInfo, sender_name: str) -> str:
    heading = DOCUMENT_HEADINGS.get(document.document_type, document.type_label)
    return f"{heading} {document.document_number} from {sender_name}"


def html_to_text(html: str) -> str:
    text = _TAG_RE.sub("", html)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


class DisabledNotifier:
    """Notifier used when email is not configured."""

    available = False

    def __init__(self, reason: str = "email is not configured"):
        self.reason = reason

    def send(
        self,
        document: DocumentInfo,
        recipient_email: str,
        sender_name: str,
        attachment: bytes | None = None,
    ) -> NotificationResult:
        return NotificationResult(success=False, error=self.reason, unavailable=True)


class SesNotifier:
    """Notifier that emails documents through AWS SES."""

    available = True

    def __init__(
        self,
        settings: NotificationSettings,
        *,
        client: Any = None,
        template_dir: Path | str | None = None,
        company_name: str = "AmpTrack",
    ):
        self.from_email = settings.from_email
        self.company_name = company_name
        self._env = build_environment(template_dir)
        self._client = client or boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )

    def render_body(self, document: DocumentInfo, sender_name: str) -> str:
        template = self._env.get_template(EMAIL_TEMPLATE)
        return template.render(
            document=document,
            heading=DOCUMENT_HEADINGS.get(document.document_type, document.type_label),
            customer=document.customer,
            items=document.items,
            sender_name=sender_name,
            company={"name": self.company_name},
        )

    def send(
        self,
        document: DocumentInfo,
        recipient_email: str,
        sender_name: str,
        attachment: bytes | None = None,
    ) -> NotificationResult:
        subject = email_subject(document, sender_name)
        html = self.render_body(document, sender_name)
        try:
            if attachment:
                response = self._client.send_raw_email(
                    Source=self.from_email,
                    Destinations=[recipient_email],
                    RawMessage={
                        "Data": self._mime_message(
                            document, recipient_email, subject, html, attachment
                        ).as_string()
                    },
                )
            else:
                response = self._client.send_email(
                    Source=self.from_email,
                    Destination={"ToAddresses": [recipient_email]},
                    Message={
                        "Subject": {"Data": subject, "Charset": "UTF-8"},
                        "Body": {
                            "Html": {"Data": html, "Charset": "UTF-8"},
                            "Text": {"Data": html_to_text(html), "Charset": "UTF-8"},
                        },
                    },
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error(
                "email_send_failed",
                extra={
                    "document_id": str(document.id),
                    "recipient": recipient_email,
                    "error": str(exc),
                },
            )
            return NotificationResult(success=False, error=str(exc))

        message_id = response.get("MessageId")
        logger.info(
            "email_sent",
            extra={
                "document_id": str(document.id),
                "recipient": recipient_email,
                "message_id": message_id,
                "has_attachment": bool(attachment),
            },
        )
        return NotificationResult(success=True, message_id=message_id)

    def _mime_message(
        self,
        document: DocumentInfo,
        recipient_email: str,
        subject: str,
        html: str,
        attachment: bytes,
    ) -> MIMEMultipart:
        message = MIMEMultipart("mixed")
        message["Subject"] = subject
        message["From"] = self.from_email
        message["To"] = recipient_email

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(html_to_text(html), "plain", "utf-8"))
        body.attach(MIMEText(html, "html", "utf-8"))
        message.attach(body)

        part = MIMEApplication(attachment, _subtype="pdf")
        part.add_header(
            "Content-Disposition",
            "attachment",
            filename=f"{document.document_number}.pdf",
        )
        message.attach(part)
        return message


def build_notifier(settings: NotificationSettings, *, company_name: str = "AmpTrack"):
    """SesNotifier when credentials are real, DisabledNotifier otherwise."""
    if not settings.configured:
        logger.warning("email_disabled", extra={"reason": "aws credentials not configured"})
        return DisabledNotifier()
    return SesNotifier(settings, company_name=company_name)
