"""Message channels used to deliver alert notifications."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from models.records import Attachment
from settings import Settings

logger = logging.getLogger(__name__)


class MessageChannel(Protocol):
    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: Optional[Attachment] = None,
    ) -> bool:
        ...


class LoggingMessageChannel:
    """Stand-in channel for deployments without an SMTP relay."""

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: Optional[Attachment] = None,
    ) -> bool:
        logger.info(
            "Notification not sent, no SMTP relay configured: %s",
            subject,
            extra={"recipient": recipient},
        )
        return True


class SmtpMessageChannel:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout

    def build_message(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: Optional[Attachment] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content("This notification requires an HTML capable mail client.")
        message.add_alternative(body, subtype="html")
        if attachment is not None:
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: Optional[Attachment] = None,
    ) -> bool:
        message = self.build_message(recipient, subject, body, attachment)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.username:
                smtp.starttls()
                smtp.login(self.username, self.password or "")
            refused = smtp.send_message(message)
        return recipient not in refused


def build_default_channel(settings: Settings) -> MessageChannel:
    if not settings.smtp_host:
        return LoggingMessageChannel()
    return SmtpMessageChannel(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        timeout=settings.send_timeout_seconds,
    )
