from __future__ import annotations

import os

import pytest

from fakes import FakeApi


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path) -> None:
    # Keep a developer's TGDISPATCH_* variables and .env out of the tests.
    for name in list(os.environ):
        if name.startswith("TGDISPATCH_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
