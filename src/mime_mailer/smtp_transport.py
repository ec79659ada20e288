"""SMTP delivery for messages formatted by :class:`~mime_mailer.lib_mail.MessageBuilder`.

Purpose
-------
Provide the transport seam (:class:`Transport`) and its default implementation
(:class:`SmtpTransport`). The builder hands over four strings – primary
recipients, subject, body, and header block – and learns only whether delivery
worked.

Contents
--------
* :class:`Transport` – protocol every transport satisfies.
* :class:`SmtpTransport` – host failover delivery through :mod:`smtplib`.
* :class:`DeliveryOptions` – resolved delivery knobs used per attempt.
* :func:`compose_wire_message` – joins the builder output into RFC 2822 data.
* :func:`validate_smtp_host` – syntax check for ``host[:port]`` entries.

System Role
-----------
Adapter layer between the pure formatting core and the network. Configuration
flows in from :data:`mime_mailer.conf_mail.conf`, delivery events flow out to
SMTP servers.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from email.header import Header
from email.utils import formatdate, getaddresses
import logging
import smtplib
import ssl
from typing import Protocol

from .conf_mail import ConfMail, check_timeout, conf


logger = logging.getLogger("mime_mailer")


class Transport(Protocol):
    """Anything able to deliver a formatted message.

    ``deliver`` returns ``True`` when the message was accepted. Implementations
    may also raise; :meth:`MessageBuilder.send` treats both a falsy return and
    an exception as a failed delivery.
    """

    def deliver(self, to: str | None, subject: str | None, body: str, headers: str) -> bool: ...


@dataclass(frozen=True)
class DeliveryOptions:
    """Concrete runtime knobs resolved for a delivery attempt.

    Fields
    ------
    credentials:
        Tuple ``(username, password)`` or ``None`` when anonymous.
    use_starttls:
        ``True`` enables STARTTLS.
    timeout:
        Socket timeout expressed in seconds.
    encoding:
        Codec used to turn the wire message into bytes.
    """

    credentials: tuple[str, str] | None
    use_starttls: bool
    timeout: float
    encoding: str


class SmtpTransport:
    """Deliver formatted messages through the first SMTP host that accepts them.

    Why
        Gives :class:`MessageBuilder` a working default while keeping the
        network behind the :class:`Transport` seam.

    What
        Every argument left as ``None`` is read from the configuration at
        delivery time, so later changes to :data:`conf` are honoured.

    Examples
    --------
    >>> from unittest import mock
    >>> mock_smtp = mock.MagicMock()
    >>> _ = mock.patch('smtplib.SMTP', mock_smtp).start()
    >>> transport = SmtpTransport(["smtp.example.com"])
    >>> transport.deliver(
    ...     "receiver@example.com",
    ...     "Hello",
    ...     "Hi there\\r\\n",
    ...     "From: sender@example.com\\r\\n",
    ... )
    True
    >>> _ = mock.patch.stopall()
    """

    def __init__(
        self,
        smtphosts: Sequence[str] | None = None,
        *,
        credentials: tuple[str, str] | None = None,
        use_starttls: bool | None = None,
        timeout: float | None = None,
        encoding: str | None = None,
        config: ConfMail | None = None,
    ) -> None:
        if timeout is not None:
            check_timeout(timeout)
        self._smtphosts = tuple(smtphosts or ())
        self._credentials = credentials
        self._use_starttls = use_starttls
        self._timeout = timeout
        self._encoding = encoding
        self._config = config

    def deliver(self, to: str | None, subject: str | None, body: str, headers: str) -> bool:
        """Send one message, trying each configured host in turn.

        Outputs
        -------
        bool
            ``True`` once a host accepts the message; ``False`` when the
            envelope is incomplete or every host fails.

        Side Effects
        ------------
        Opens SMTP connections and logs failures. Raises :class:`ValueError`
        for unusable host configuration.
        """

        config = self._config or conf
        hosts = _prepare_hosts(self._smtphosts or tuple(config.smtphosts))
        delivery = self._resolve_delivery_options(config)

        fields = _split_header_fields(headers)
        sender = _envelope_sender(fields, config)
        if sender is None:
            logger.warning("no envelope sender: set a From address or conf.sendmail_from")
            return False
        recipients = _envelope_recipients(to, fields)
        if not recipients:
            logger.warning("no envelope recipients in To, CC or BCC")
            return False

        data = compose_wire_message(to, subject, body, headers).encode(delivery.encoding)
        for host in hosts:
            try:
                _deliver_via_host(host=host, sender=sender, recipients=recipients, data=data, delivery=delivery)
                logger.debug(f'mail sent to "{recipients}" via host "{host}"')
                return True
            except Exception:
                logger.warning(
                    'can not send mail to "%s" via host "%s"',
                    recipients,
                    host,
                    exc_info=True,
                )
        return False

    def _resolve_delivery_options(self, config: ConfMail) -> DeliveryOptions:
        credentials = self._credentials or config.resolved_credentials()
        use_starttls = bool(self._use_starttls if self._use_starttls is not None else config.smtp_use_starttls)
        timeout = float(self._timeout if self._timeout is not None else config.smtp_timeout)
        encoding = self._encoding or config.smtp_encoding
        return DeliveryOptions(credentials=credentials, use_starttls=use_starttls, timeout=timeout, encoding=encoding)


def compose_wire_message(to: str | None, subject: str | None, body: str, headers: str) -> str:
    """Join builder output into the data transmitted after ``DATA``.

    ``To`` and ``Subject`` lead, followed by ``Date`` and ``MIME-Version`` when
    the header block lacks them, then the header block itself without its
    ``BCC`` field, one empty line, and the body.

    Examples
    --------
    >>> wire = compose_wire_message(
    ...     "a@example.com", "Hi", "body", "BCC: hidden@example.com\\r\\nDate: x\\r\\n\\r\\n"
    ... )
    >>> wire.splitlines()
    ['To: a@example.com', 'Subject: Hi', 'MIME-Version: 1.0', 'Date: x', '', 'body']
    """

    fields = _split_header_fields(headers)
    present = {name for name, _raw in fields}

    lines: list[str] = []
    if to:
        lines.append(f"To: {to}\r\n")
    if subject is not None:
        lines.append(f"Subject: {_encode_subject(subject)}\r\n")
    if "date" not in present:
        lines.append(f"Date: {formatdate(localtime=True)}\r\n")
    if "mime-version" not in present:
        lines.append("MIME-Version: 1.0\r\n")
    lines.extend(raw for name, raw in fields if name != "bcc")
    return "".join(lines) + "\r\n" + body


def validate_smtp_host(address: str) -> None:
    """Raise :class:`ValueError` unless ``address`` is a usable host entry.

    Accepted forms: ``host``, ``host:port``, ``[ipv6]``, ``[ipv6]:port``.
    """

    _parse_smtp_host(address)


def _deliver_via_host(
    *,
    host: str,
    sender: str,
    recipients: tuple[str, ...],
    data: bytes,
    delivery: DeliveryOptions,
) -> None:
    """Run one SMTP session: connect, optional STARTTLS and login, send."""

    hostname, port = _parse_smtp_host(host)
    with smtplib.SMTP(hostname, port=port or 0, timeout=delivery.timeout) as smtp_connection:
        if delivery.use_starttls:
            smtp_connection.starttls(context=ssl.create_default_context())
        if delivery.credentials is not None:
            username, password = delivery.credentials
            smtp_connection.login(username, password)
        smtp_connection.sendmail(sender, list(recipients), data)


def _split_header_fields(headers: str) -> list[tuple[str, str]]:
    """Split a CRLF header block into ``(lower-case name, raw field)`` pairs.

    Folded continuation lines stay attached to their field; blank lines are
    dropped.
    """

    fields: list[tuple[str, str]] = []
    for line in headers.split("\r\n"):
        if not line:
            continue
        if line[0] in " \t" and fields:
            name, raw = fields[-1]
            fields[-1] = (name, raw + line + "\r\n")
            continue
        name = line.partition(":")[0].strip().lower()
        fields.append((name, line + "\r\n"))
    return fields


def _field_value(raw: str) -> str:
    return raw.partition(":")[2].replace("\r\n", "")


def _envelope_sender(fields: list[tuple[str, str]], config: ConfMail) -> str | None:
    for name, raw in fields:
        if name != "from":
            continue
        for _display_name, address in getaddresses([_field_value(raw)]):
            if address:
                return address
    return config.sendmail_from


def _envelope_recipients(to: str | None, fields: list[tuple[str, str]]) -> tuple[str, ...]:
    values = [to] if to else []
    values.extend(_field_value(raw) for name, raw in fields if name in ("cc", "bcc"))
    addresses = [address for _display_name, address in getaddresses(values) if address]
    return tuple(dict.fromkeys(addresses))


def _encode_subject(subject: str) -> str:
    """Flatten line breaks and RFC 2047-encode non-ASCII subjects."""

    flattened = " ".join(subject.splitlines())
    if flattened.isascii():
        return flattened
    return Header(flattened, "utf-8").encode()


def _prepare_hosts(hosts: tuple[str, ...]) -> tuple[str, ...]:
    """Return a validated, deduplicated tuple of normalised host strings."""

    normalised = [entry.strip().strip('"').strip("'") for entry in hosts]
    filtered = [value for value in normalised if value]
    unique = tuple(dict.fromkeys(filtered))
    if not unique:
        raise ValueError("no valid smtphost passed")
    for host in unique:
        validate_smtp_host(host)
    return unique


def _parse_smtp_host(address: str) -> tuple[str, int | None]:
    """Separate host and optional port, unwrapping bracketed IPv6 literals.

    Examples
    --------
    >>> _parse_smtp_host("smtp.example.com:587")
    ('smtp.example.com', 587)
    >>> _parse_smtp_host("[::1]")
    ('::1', None)
    """

    if not address:
        raise ValueError("empty SMTP host")

    if address.startswith("["):
        closing = address.find("]")
        if closing == -1:
            raise ValueError(f'missing closing bracket in smtp host "{address}"')
        host = address[1:closing]
        remainder = address[closing + 1 :]
        if not host:
            raise ValueError(f'empty SMTP host in "{address}"')
        if not remainder:
            return host, None
        if not remainder.startswith(":"):
            raise ValueError(f'unexpected characters after bracket in smtp host "{address}"')
        return host, _parse_port(remainder[1:], address)

    if ":" not in address:
        return address, None
    host, port_str = address.rsplit(":", 1)
    if not host:
        raise ValueError(f'empty SMTP host in "{address}"')
    return host, _parse_port(port_str, address)


def _parse_port(port_str: str, address: str) -> int:
    try:
        port = int(port_str)
    except ValueError as exc:
        raise ValueError(f'invalid smtp port in "{address}"') from exc
    if not 1 <= port <= 65535:
        raise ValueError(f'port must be 1-65535, got {port} in "{address}"')
    return port
