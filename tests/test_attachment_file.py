from __future__ import annotations

import os
from pathlib import Path

import pytest

from mime_mailer import AttachmentFile, open_attachment_file


@pytest.mark.os_agnostic
def test_open_resolves_the_path_and_exposes_file_facts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "invoice.pdf"
    target.write_bytes(b"%PDF-1.4 fake")
    monkeypatch.chdir(tmp_path)

    handle = open_attachment_file("invoice.pdf")

    assert handle.path == target.resolve()
    assert handle.basename() == "invoice.pdf"
    assert handle.mime_type() == "application/pdf"
    assert handle.size() == len(b"%PDF-1.4 fake")
    assert handle.read_all() == b"%PDF-1.4 fake"
    assert str(handle) == str(target.resolve())


@pytest.mark.os_agnostic
def test_unknown_extensions_fall_back_to_octet_stream(tmp_path: Path) -> None:
    target = tmp_path / "blob.zzzunknown"
    target.write_bytes(b"\x00")

    assert open_attachment_file(target).mime_type() == "application/octet-stream"


@pytest.mark.os_agnostic
def test_open_yields_a_stream_that_is_closed_afterwards(tmp_path: Path) -> None:
    target = tmp_path / "data.bin"
    target.write_bytes(b"abc")
    handle = AttachmentFile(target)

    with handle.open() as stream:
        assert stream.read() == b"abc"

    assert stream.closed is True


@pytest.mark.os_agnostic
@pytest.mark.parametrize("name", ["missing.txt", "."])
def test_missing_files_and_directories_are_not_readable(tmp_path: Path, name: str) -> None:
    with pytest.raises(FileNotFoundError, match="can not be read"):
        open_attachment_file(tmp_path / name)


@pytest.mark.skipif(os.name == "nt" or (hasattr(os, "geteuid") and os.geteuid() == 0), reason="needs POSIX permissions")
def test_files_without_read_permission_are_rejected(tmp_path: Path) -> None:
    target = tmp_path / "secret.txt"
    target.write_text("secret", encoding="utf-8")
    target.chmod(0o000)
    try:
        with pytest.raises(FileNotFoundError):
            open_attachment_file(target)
    finally:
        target.chmod(0o600)
