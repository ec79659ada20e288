"""Runtime configuration and address validation shared by builder and transport.

Contents
--------
* :class:`ConfMail` – validated runtime configuration surface.
* :data:`conf` – module-wide configuration instance.
* :func:`is_valid_email_address` / :func:`validate_email_address` – default
  email syntax predicate and its raising twin.
"""

from __future__ import annotations

from collections.abc import Iterable
import re
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator


_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b")


class ConfMail(BaseModel):
    """Validated mail configuration shared across builders and transports.

    Why
        Expose a single authoritative object for delivery defaults while
        enforcing types and sensible ranges.

    What
        A Pydantic model read by :class:`mime_mailer.smtp_transport.SmtpTransport`
        and by notification resolution in
        :class:`mime_mailer.lib_mail.MessageBuilder`.

    Fields
    ------
    smtphosts:
        Ordered list of host strings, e.g. ``"smtp.example.com:587"``.
    smtp_username / smtp_password:
        Optional credentials used when both values are supplied.
    smtp_use_starttls:
        Enables ``STARTTLS`` handshakes before authentication.
    smtp_timeout:
        Socket timeout in seconds for SMTP connections.
    smtp_encoding:
        Codec applied to the assembled message before it goes on the wire.
        Matches the charset announced by the text parts.
    sendmail_from:
        Default sender address. Used as envelope sender when a message has no
        ``From`` header and as the last fallback for read receipts.
    """

    smtphosts: list[str] = Field(default_factory=list)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_starttls: bool = False
    smtp_timeout: float = 30.0
    smtp_encoding: str = "iso-8859-1"
    sendmail_from: str | None = None

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("smtphosts", mode="before")
    @classmethod
    def _coerce_smtphosts(cls, value: Any) -> list[str]:
        """Coerce ``None``, strings, and iterables into a host list."""

        return _collect_host_inputs(value)

    @field_validator("smtp_timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        return check_timeout(value)

    @field_validator("sendmail_from")
    @classmethod
    def _check_sendmail_from(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        validate_email_address(value)
        return value

    def resolved_credentials(self) -> tuple[str, str] | None:
        """Return a ``(username, password)`` tuple when both fields are set."""

        if self.smtp_username and self.smtp_password:
            return self.smtp_username, self.smtp_password
        return None


def check_timeout(value: float) -> float:
    """Return ``value`` unchanged or raise when it is not strictly positive."""

    if value <= 0:
        raise ValueError(f"smtp_timeout must be positive, got {value}")
    return value


def is_valid_email_address(value: str) -> bool:
    """Return ``True`` when the value matches a simple email pattern.

    Surrounding whitespace is ignored.

    Examples
    --------
    >>> is_valid_email_address("user@example.com")
    True
    >>> is_valid_email_address(" user@example.com ")
    True
    >>> is_valid_email_address("invalid@")
    False
    """

    return bool(_EMAIL_PATTERN.fullmatch(value.strip()))


def validate_email_address(value: str) -> None:
    """Raise :class:`ValueError` unless ``value`` is a syntactically valid email."""

    if not is_valid_email_address(value):
        raise ValueError(f'invalid email address "{value}"')


def _normalise_host(candidate: str) -> str:
    """Trim whitespace and surrounding quotes from a host entry."""

    return candidate.strip().strip('"').strip("'")


def _collect_host_inputs(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [_normalise_host(value)]
    if isinstance(value, Iterable):  # type: ignore[reportUnnecessaryIsInstance]
        hosts: list[str] = []
        for item in cast(Iterable[Any], value):
            if not isinstance(item, str):
                raise ValueError("smtphosts entries must be strings")
            hosts.append(_normalise_host(item))
        return hosts
    raise ValueError("smtphosts must be a string, list of strings, or tuple of strings")


#: Global configuration instance reflecting defaults and runtime overrides.
conf = ConfMail()
