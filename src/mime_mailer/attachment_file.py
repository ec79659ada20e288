"""Filesystem access for message attachments.

Purpose
-------
Give :class:`mime_mailer.lib_mail.MessageBuilder` a narrow view of the files it
attaches: a readable handle that knows its basename, MIME type, size, and bytes.

Contents
--------
* :class:`AttachmentFile` – frozen handle around a readable regular file.
* :func:`open_attachment_file` – default file opener used by the builder.

System Role
-----------
Adapter layer. The builder only depends on the callable signature
``(path) -> AttachmentFile`` so tests or callers can swap in another opener.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
import mimetypes
import os
import pathlib
from typing import BinaryIO


DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class AttachmentFile:
    """Readable file selected as an attachment.

    Fields
    ------
    path:
        Absolute path resolved when the handle was opened.
    """

    path: pathlib.Path

    def __str__(self) -> str:
        return str(self.path)

    def basename(self) -> str:
        return self.path.name

    def mime_type(self) -> str:
        """Return the MIME type guessed from the filename.

        Falls back to ``application/octet-stream`` for unknown extensions.

        Examples
        --------
        >>> AttachmentFile(pathlib.Path("/tmp/report.pdf")).mime_type()
        'application/pdf'
        >>> AttachmentFile(pathlib.Path("/tmp/blob.unknownext")).mime_type()
        'application/octet-stream'
        """

        guessed, _encoding = mimetypes.guess_type(self.path.name)
        return guessed or DEFAULT_MIME_TYPE

    def size(self) -> int:
        return self.path.stat().st_size

    @contextmanager
    def open(self) -> Iterator[BinaryIO]:
        """Yield a binary stream that is closed when the block exits."""

        stream = self.path.open("rb")
        try:
            yield stream
        finally:
            stream.close()

    def read_all(self) -> bytes:
        with self.open() as stream:
            return stream.read()


def is_readable_file(path: pathlib.Path) -> bool:
    """Return ``True`` for existing regular files the process may read."""

    return path.is_file() and os.access(path, os.R_OK)


def open_attachment_file(path: str | os.PathLike[str]) -> AttachmentFile:
    """Resolve ``path`` into an :class:`AttachmentFile`.

    Inputs
    ------
    path:
        Relative or absolute filesystem path.

    Outputs
    -------
    AttachmentFile
        Handle bound to the resolved absolute path.

    Side Effects
    ------------
    Touches the filesystem to check existence and permissions; raises
    :class:`FileNotFoundError` when the file cannot be read.
    """

    absolute_path = pathlib.Path(path).expanduser().resolve()
    if not is_readable_file(absolute_path):
        raise FileNotFoundError(f'Attachment File "{absolute_path}" can not be read')
    return AttachmentFile(path=absolute_path)
