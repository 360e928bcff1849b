from __future__ import annotations

import pytest

from helpers.factories import SPREADSHEET_ID, make_config
from helpers.fake_backend import FakeSheetsBackend
from sheetcore import SheetCore


@pytest.fixture
def backend() -> FakeSheetsBackend:
    fake = FakeSheetsBackend()
    fake.create(SPREADSHEET_ID, ("Sheet1", "Data"))
    return fake


@pytest.fixture
def core(backend: FakeSheetsBackend) -> SheetCore:
    return SheetCore(backend, make_config())
