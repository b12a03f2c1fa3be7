from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from services.scheduler import BackupScheduler

START = datetime(2026, 10, 17, 1, 30)  # a Saturday


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _scheduler(clock, pipeline=None):
    return BackupScheduler(
        pipeline or MagicMock(),
        {"nightly": "0 2 * * *", "weekly": "0 3 * * 0"},
        clock=clock,
    )


def test_initial_next_runs():
    scheduler = _scheduler(FakeClock(START))
    assert scheduler.next_run["nightly"] == datetime(2026, 10, 17, 2, 0)
    assert scheduler.next_run["weekly"] == datetime(2026, 10, 18, 3, 0)


def test_nothing_runs_before_due():
    pipeline = MagicMock()
    scheduler = _scheduler(FakeClock(START), pipeline)

    assert scheduler.run_pending(START + timedelta(minutes=10)) == []
    pipeline.run.assert_not_called()


def test_due_kind_runs_once_and_reschedules():
    clock = FakeClock(START)
    pipeline = MagicMock()
    scheduler = _scheduler(clock, pipeline)

    clock.now = datetime(2026, 10, 17, 2, 0, 5)
    results = scheduler.run_pending()

    pipeline.run.assert_called_once_with("nightly")
    assert len(results) == 1
    assert scheduler.next_run["nightly"] == datetime(2026, 10, 18, 2, 0)

    scheduler.run_pending()
    assert pipeline.run.call_count == 1


def test_both_kinds_due_run_in_time_order():
    clock = FakeClock(START)
    pipeline = MagicMock()
    scheduler = _scheduler(clock, pipeline)

    clock.now = datetime(2026, 10, 18, 3, 30)
    scheduler.run_pending()

    assert [c.args[0] for c in pipeline.run.call_args_list] == ["nightly", "weekly"]


def test_invalid_cron_rejected():
    with pytest.raises(ValueError):
        BackupScheduler(MagicMock(), {"nightly": "not a cron"})


def test_run_forever_stops_on_event():
    import threading

    stop = threading.Event()
    stop.set()
    pipeline = MagicMock()
    _scheduler(FakeClock(START), pipeline).run_forever(stop)
    pipeline.run.assert_not_called()


def test_raising_run_still_reschedules_and_other_kind_runs():
    clock = FakeClock(START)
    pipeline = MagicMock()
    pipeline.run.side_effect = [RuntimeError("boom"), MagicMock()]
    scheduler = _scheduler(clock, pipeline)

    clock.now = datetime(2026, 10, 18, 3, 30)
    results = scheduler.run_pending()

    assert [c.args[0] for c in pipeline.run.call_args_list] == ["nightly", "weekly"]
    assert len(results) == 1
    assert scheduler.next_run["nightly"] == datetime(2026, 10, 19, 2, 0)
    assert scheduler.next_run["weekly"] == datetime(2026, 10, 25, 3, 0)

    scheduler.run_pending()
    assert pipeline.run.call_count == 2
