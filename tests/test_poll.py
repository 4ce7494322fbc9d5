from graceful_destroy.poll import wait_for_zero

from fakes import FakeClock


def _wait(counts, clock, *, interval=5, ceiling=30):
    it = iter(counts)
    return wait_for_zero(
        lambda: next(it),
        label="things",
        interval=interval,
        ceiling=ceiling,
        clock=clock.monotonic,
        sleep=clock.sleep,
    )


def test_returns_true_as_soon_as_drained():
    clock = FakeClock()
    assert _wait([2, 1, 0], clock)
    assert clock.sleeps == [5, 5]


def test_empty_on_first_check_never_sleeps():
    clock = FakeClock()
    assert _wait([0], clock)
    assert clock.sleeps == []


def test_times_out_only_after_the_full_ceiling():
    clock = FakeClock()
    assert not _wait([1] * 10, clock, interval=15, ceiling=40)
    # the last sleep is trimmed so the ceiling is hit exactly
    assert clock.sleeps == [15, 15, 10]
    assert clock.now == 40


def test_timeout_output(capsys):
    clock = FakeClock()
    _wait([3] * 10, clock, interval=10, ceiling=20)
    out = capsys.readouterr().out
    assert "--- things: remaining=3 (0s/20s)" in out
    assert "--- things: still 3 after 20s (timeout)" in out
