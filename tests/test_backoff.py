from __future__ import annotations

import pytest

from kartmon.supervisor import ReconnectBackoff


def test_delays_grow_by_factor_and_cap() -> None:
    backoff = ReconnectBackoff()
    delays = [backoff.next_delay() for _ in range(10)]

    assert delays[:4] == [5.0, 7.5, 11.25, 16.875]
    assert delays[-1] == 60.0
    assert max(delays) == 60.0
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:], strict=False))


def test_reset_returns_to_base() -> None:
    backoff = ReconnectBackoff(base=1.0, factor=2.0, ceiling=8.0)
    for _ in range(5):
        backoff.next_delay()
    assert backoff.current == 8.0

    backoff.reset()
    assert backoff.next_delay() == pytest.approx(1.0)
