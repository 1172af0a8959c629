from __future__ import annotations

import pytest
from feedkit import FakeScheduler


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()
