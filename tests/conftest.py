from __future__ import annotations

from typing import Generator

import pytest

from mime_mailer import conf_mail


@pytest.fixture(autouse=True)
def _reset_conf_mail() -> Generator[None, None, None]:  # pyright: ignore[reportUnusedFunction]
    snapshot = conf_mail.conf.model_copy(deep=True)
    try:
        yield
    finally:
        for key, value in snapshot.model_dump().items():
            setattr(conf_mail.conf, key, value)
