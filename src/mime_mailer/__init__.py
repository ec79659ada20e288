"""Public package surface exposing the message builder, transports, and configuration."""

from __future__ import annotations

from .attachment_file import AttachmentFile, open_attachment_file
from .conf_mail import ConfMail, conf, is_valid_email_address, validate_email_address
from .lib_mail import (
    PRIORITY_LEVELS,
    Attachment,
    EmailAddress,
    MessageBuilder,
    PriorityHeaders,
    format_address_list,
    logger,
    sanitize_email,
)
from .smtp_transport import SmtpTransport, Transport, compose_wire_message, validate_smtp_host

__all__ = [
    "PRIORITY_LEVELS",
    "Attachment",
    "AttachmentFile",
    "ConfMail",
    "EmailAddress",
    "MessageBuilder",
    "PriorityHeaders",
    "SmtpTransport",
    "Transport",
    "compose_wire_message",
    "conf",
    "format_address_list",
    "is_valid_email_address",
    "logger",
    "open_attachment_file",
    "sanitize_email",
    "validate_email_address",
    "validate_smtp_host",
]
