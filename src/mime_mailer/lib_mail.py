"""Fluent builder assembling MIME messages for a pluggable transport.

Purpose
-------
Collect recipients, sender, subject, bodies, custom headers, attachments,
priority, and read-receipt requests, then serialise them into a header block
and a multipart body that a mail transport can hand to an MTA verbatim.

Contents
--------
* :class:`EmailAddress` – frozen address with optional display name.
* :class:`Attachment` – frozen attachment reference with name and MIME type.
* :class:`PriorityHeaders` / :data:`PRIORITY_LEVELS` – priority header values.
* :class:`MessageBuilder` – mutators, formatting helpers, and :meth:`send`.

System Role
-----------
Core of the package. Formatting is pure over the builder state; the only side
effects are reading attachment files and calling the transport.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from email.utils import formatdate
import hashlib
import logging
import os
import re
import time

from .attachment_file import AttachmentFile, open_attachment_file
from .conf_mail import conf, is_valid_email_address
from .smtp_transport import SmtpTransport, Transport


logger = logging.getLogger("mime_mailer")

#: Characters kept by :func:`sanitize_email`; everything else is dropped.
_UNSAFE_EMAIL_CHARACTERS = re.compile(r"[^A-Za-z0-9!#$%&'*+\-=?^_`{|}~@.\[\]]")

_BASE64_LINE_LENGTH = 76

_CRLF = "\r\n"


@dataclass(frozen=True)
class EmailAddress:
    """Address accepted by one of the recipient or sender mutators.

    Fields
    ------
    address:
        Raw address as supplied; sanitised only when formatted.
    display_name:
        Optional human readable name rendered in quotes.
    """

    address: str
    display_name: str | None = None


@dataclass(frozen=True)
class Attachment:
    """File queued for attachment together with its announced name and type."""

    file: AttachmentFile
    name: str
    mime_type: str


@dataclass(frozen=True)
class PriorityHeaders:
    """Values for ``X-Priority``, ``X-MSMail-Priority`` and ``Importance``."""

    x_priority: str
    x_msmail_priority: str
    importance: str


PRIORITY_LEVELS: dict[int, PriorityHeaders] = {
    1: PriorityHeaders("1 (Highest)", "High", "High"),
    2: PriorityHeaders("2 (High)", "High", "High"),
    3: PriorityHeaders("3 (Normal)", "Normal", "Normal"),
    4: PriorityHeaders("4 (Low)", "Low", "Low"),
    5: PriorityHeaders("5 (Lowest)", "Low", "Low"),
}


@dataclass
class _HeaderState:
    to: list[EmailAddress] = field(default_factory=list)
    cc: list[EmailAddress] = field(default_factory=list)
    bcc: list[EmailAddress] = field(default_factory=list)
    from_: EmailAddress | None = None
    reply_to: EmailAddress | None = None
    notify: EmailAddress | None = None
    priority: PriorityHeaders | None = None
    custom: dict[str, str] = field(default_factory=dict)
    files: list[Attachment] = field(default_factory=list)


@dataclass
class _MessageBody:
    text: str | None = None
    html: str | None = None


EmailValidator = Callable[[str], bool]
FileOpener = Callable[[str], AttachmentFile]
PrepareCallback = Callable[["MessageBuilder"], object]


def sanitize_email(address: str) -> str:
    """Drop every character that may not appear in an email address.

    Examples
    --------
    >>> sanitize_email("john.doe@example.com")
    'john.doe@example.com'
    >>> sanitize_email("evil@example.com\\r\\nBcc: x@y.z")
    'evil@example.comBccx@y.z'
    >>> sanitize_email(" <a@b.c> ")
    'a@b.c'
    """

    return _UNSAFE_EMAIL_CHARACTERS.sub("", address)


def format_address_list(addresses: Sequence[EmailAddress]) -> str | None:
    """Render addresses for a header value; ``None`` when nothing is left.

    Entries with a non-blank display name render as ``"Name" <address>``,
    the others as the bare address. Entries are joined by ``,`` without
    spaces.

    Examples
    --------
    >>> format_address_list([EmailAddress("a@x.com", "Alice"), EmailAddress("b@x.com", " ")])
    '"Alice" <a@x.com>,b@x.com'
    >>> format_address_list([EmailAddress("")]) is None
    True
    """

    rendered: list[str] = []
    for entry in addresses:
        address = sanitize_email(entry.address)
        if entry.display_name is not None and entry.display_name.strip() != "":
            name = entry.display_name.replace("\r", "").replace("\n", "")
            rendered.append(f'"{name}" <{address}>')
        else:
            rendered.append(address)

    joined = ",".join(rendered)
    return joined if joined.strip() != "" else None


def _wrap_base64(data: bytes) -> str:
    """Base64-encode ``data`` in CRLF-terminated lines of 76 characters."""

    encoded = base64.b64encode(data).decode("ascii")
    return "".join(
        encoded[start : start + _BASE64_LINE_LENGTH] + _CRLF for start in range(0, len(encoded), _BASE64_LINE_LENGTH)
    )


class MessageBuilder:
    """Accumulate message state and turn it into MIME text for a transport.

    Why
        Callers describe a message step by step with chainable mutators and
        trigger formatting plus delivery with a single :meth:`send`.

    What
        One instance formats one message. Address mutators validate their
        input before touching state, so a failed call leaves the builder as it
        was. ``to``/``cc``/``bcc`` append; ``from_``/``reply``/``notify``
        replace the previous value.

    Inputs
    ------
    transport:
        Object with ``deliver(to, subject, body, headers) -> bool``. Defaults
        to :class:`SmtpTransport` reading :data:`conf`.
    email_validator:
        Predicate deciding whether an address is acceptable.
    file_opener:
        Turns a path into an :class:`AttachmentFile`; raises when unreadable.
    clock:
        Returns the current POSIX time; seeds the boundary.

    Examples
    --------
    >>> class EchoTransport:
    ...     def deliver(self, to, subject, body, headers):
    ...         return True
    >>> mail = MessageBuilder(EchoTransport())
    >>> mail.to("r@x.com").subject("Hi").text("Hello").send().success()
    True
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        email_validator: EmailValidator = is_valid_email_address,
        file_opener: FileOpener = open_attachment_file,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport: Transport = transport if transport is not None else SmtpTransport()
        self._email_validator = email_validator
        self._file_opener = file_opener
        self._clock = clock
        self._headers = _HeaderState()
        self._body = _MessageBody()
        self._subject: str | None = None
        self._boundary: str | None = None
        self._sent = False

    # ------------------------------------------------------------------
    # sending
    # ------------------------------------------------------------------

    def send(self, prepare: PrepareCallback | None = None) -> MessageBuilder:
        """Format the message and hand it to the transport.

        Why
            Delivery is best effort: callers check :meth:`success` or
            :meth:`fails` afterwards instead of catching exceptions.

        Inputs
        ------
        prepare:
            Optional callable invoked with this builder before formatting,
            allowing last-minute configuration.

        Outputs
        -------
        MessageBuilder
            ``self`` for chaining.

        Side Effects
        ------------
        Reads attachment files, calls the transport, and logs a warning with
        traceback when the transport raises.
        """

        if prepare is not None:
            prepare(self)

        to = self.format_to()
        headers = self.format_headers()
        message = self.format_message()

        try:
            self._sent = bool(self._transport.deliver(to, self._subject, message, headers))
        except Exception:
            logger.warning('transport failed to deliver mail to "%s"', to, exc_info=True)
            self._sent = False

        if self._sent:
            logger.debug(f'mail "{self._subject}" handed to transport for "{to}"')
        else:
            logger.warning('mail "%s" to "%s" was not delivered', self._subject, to)
        return self

    def success(self) -> bool:
        return self._sent

    def fails(self) -> bool:
        return not self._sent

    # ------------------------------------------------------------------
    # addresses
    # ------------------------------------------------------------------

    def to(self, email: str, name: str | None = None) -> MessageBuilder:
        self._headers.to.append(self._accept_address("to", email, name))
        return self

    def cc(self, email: str, name: str | None = None) -> MessageBuilder:
        self._headers.cc.append(self._accept_address("cc", email, name))
        return self

    def bcc(self, email: str, name: str | None = None) -> MessageBuilder:
        self._headers.bcc.append(self._accept_address("bcc", email, name))
        return self

    def from_(self, email: str, name: str | None = None) -> MessageBuilder:
        """Set the sender, replacing any earlier one."""

        self._headers.from_ = self._accept_address("from_", email, name)
        return self

    def reply(self, email: str, name: str | None = None) -> MessageBuilder:
        """Set the ``Reply-To`` address, replacing any earlier one."""

        self._headers.reply_to = self._accept_address("reply", email, name)
        return self

    def notify(self, email: str | None, name: str | None = None) -> MessageBuilder:
        """Request a read receipt sent to ``email``.

        Passing ``None`` still requests a receipt; the address is then taken
        from the sender or from ``conf.sendmail_from`` when formatting.
        """

        if email is None:
            self._headers.notify = EmailAddress("", name)
        else:
            self._headers.notify = self._accept_address("notify", email, name)
        return self

    def _accept_address(self, method: str, email: str, name: str | None) -> EmailAddress:
        if not self._email_validator(email):
            raise ValueError(f"Argument 1 passed to {type(self).__name__}.{method}() must be a valid email")
        return EmailAddress(email, name)

    # ------------------------------------------------------------------
    # content
    # ------------------------------------------------------------------

    def subject(self, subject: str) -> MessageBuilder:
        self._subject = subject
        return self

    def text(self, text: str) -> MessageBuilder:
        self._body.text = text
        return self

    def html(self, html: str) -> MessageBuilder:
        self._body.html = html
        return self

    def add_header(self, key: str, value: str) -> MessageBuilder:
        self._headers.custom[key] = value
        return self

    def remove_header(self, key: str) -> MessageBuilder:
        self._headers.custom.pop(key, None)
        return self

    def get_headers(self) -> dict[str, str]:
        """Return a copy of the custom headers in insertion order."""

        return dict(self._headers.custom)

    def priority(self, level: int = 1) -> MessageBuilder:
        """Set the priority level; 1 is highest, 5 is lowest."""

        if level not in PRIORITY_LEVELS:
            raise ValueError(
                f'Argument 1 passed to {type(self).__name__}.priority() should be between 1 and 5, "{level}" given'
            )
        self._headers.priority = PRIORITY_LEVELS[level]
        return self

    def attachment(
        self,
        file_path: str | os.PathLike[str],
        name: str | None = None,
        mime: str | None = None,
    ) -> MessageBuilder:
        """Queue a file for attachment.

        Why
            Unreadable files are rejected now rather than at :meth:`send`.

        Inputs
        ------
        file_path:
            Path to the file on disk.
        name:
            Filename announced to the recipient; defaults to the basename.
        mime:
            MIME type announced to the recipient; defaults to the detected one.

        Side Effects
        ------------
        Raises :class:`RuntimeError` when the file cannot be read.
        """

        try:
            handle = self._file_opener(os.fspath(file_path))
        except OSError as exc:
            raise RuntimeError(
                f'File "{os.fspath(file_path)}" passed to {type(self).__name__}.attachment() '
                "is not an existing or readable file"
            ) from exc

        self._headers.files.append(
            Attachment(
                file=handle,
                name=name if name is not None else handle.basename(),
                mime_type=mime if mime is not None else handle.mime_type(),
            )
        )
        return self

    # ------------------------------------------------------------------
    # formatting
    # ------------------------------------------------------------------

    def format_to(self) -> str | None:
        """Return the formatted primary recipients or ``None`` when there are none."""

        if not self._headers.to:
            return None
        return format_address_list(self._headers.to)

    def format_notify(self) -> str | None:
        """Resolve the read-receipt address.

        ``None`` when no receipt was requested. Otherwise the notify address,
        falling back to the sender and then to ``conf.sendmail_from``.
        """

        if self._headers.notify is None:
            return None

        notify = format_address_list([self._headers.notify])
        if notify is None:
            if self._headers.from_ is not None:
                notify = format_address_list([self._headers.from_])
            else:
                notify = conf.sendmail_from
        return notify

    def format_headers(self) -> str:
        """Build the CRLF-terminated header block.

        Order: address headers, read-receipt headers, priority headers,
        custom headers, then exactly one ``Content-Type`` line. Without
        attachments that line is followed by an empty line.
        """

        state = self._headers
        headers: list[str] = []

        address_fields: list[tuple[str, list[EmailAddress]]] = [
            ("BCC", state.bcc),
            ("CC", state.cc),
            ("Reply-To", [state.reply_to] if state.reply_to else []),
            ("From", [state.from_] if state.from_ else []),
        ]
        for label, addresses in address_fields:
            if addresses:
                headers.append(f"{label}: {format_address_list(addresses) or ''}{_CRLF}")

        notify = self.format_notify()
        if notify:
            headers.append(f"Disposition-Notification-To: {notify}{_CRLF}")
            headers.append(f"X-Confirm-Reading-To: {notify}{_CRLF}")

        if state.priority is not None:
            headers.append(f"X-Priority: {state.priority.x_priority}{_CRLF}")
            headers.append(f"X-MSMail-Priority: {state.priority.x_msmail_priority}{_CRLF}")
            headers.append(f"Importance: {state.priority.importance}{_CRLF}")

        for key, value in state.custom.items():
            headers.append(f"{key}: {value}{_CRLF}")

        boundary = self._get_boundary()
        if state.files:
            headers.append(f'Content-Type: multipart/mixed; boundary="Boundary-mixed-{boundary}"{_CRLF}')
        else:
            headers.append(f'Content-Type: multipart/alternative; boundary="Boundary-alt-{boundary}"{_CRLF}{_CRLF}')

        return "".join(headers)

    def format_message(self) -> str:
        """Build the CRLF-terminated multipart body.

        Text and HTML parts live in a ``multipart/alternative`` section. With
        attachments that section is the first part of a ``multipart/mixed``
        envelope and each file follows as a base64 part.
        """

        boundary = self._get_boundary()
        files = self._headers.files
        message: list[str] = []

        if files:
            message.append(f"--Boundary-mixed-{boundary}{_CRLF}")
            message.append(f'Content-Type: multipart/alternative; boundary="Boundary-alt-{boundary}"{_CRLF}{_CRLF}')

        for subtype, content in (("plain", self._body.text), ("html", self._body.html)):
            if content is None:
                continue
            message.append(f"--Boundary-alt-{boundary}{_CRLF}")
            message.append(f'Content-Type: text/{subtype}; charset="iso-8859-1"{_CRLF}')
            message.append(f"Content-Transfer-Encoding: 7bit{_CRLF}{_CRLF}")
            message.append(f"{content}{_CRLF}{_CRLF}")

        message.append(f"--Boundary-alt-{boundary}--{_CRLF}{_CRLF}")

        if files:
            for attachment in files:
                with attachment.file.open() as stream:
                    data = _wrap_base64(stream.read())
                message.append(f"--Boundary-mixed-{boundary}{_CRLF}")
                message.append(f'Content-Type: {attachment.mime_type}; name="{attachment.name}"{_CRLF}')
                message.append(f"Content-Transfer-Encoding: base64{_CRLF}")
                message.append(f"Content-Disposition: attachment{_CRLF}{_CRLF}")
                message.append(f"{data}{_CRLF}")
            message.append(f"--Boundary-mixed-{boundary}--{_CRLF}")

        return "".join(message)

    def _get_boundary(self) -> str:
        """Return the boundary, computing it on first use.

        The value is kept for the lifetime of the builder, so repeated
        :meth:`send` calls reuse it.
        """

        if self._boundary is None:
            stamp = formatdate(self._clock(), localtime=True)
            self._boundary = hashlib.md5(stamp.encode("ascii")).hexdigest()
        return self._boundary
