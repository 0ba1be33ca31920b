import threading
from datetime import timedelta
from unittest.mock import MagicMock

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent

from reminders.engine import CycleReport, ReminderEngine
from scheduler import JOB_ID, ReminderScheduler

from conftest import DAY0, FakeNotifier, FakeSource, MemoryLedger, appt


def make_engine(source=None):
    return ReminderEngine(source or FakeSource([appt("A", 1)]), FakeNotifier(), MemoryLedger())


def test_run_now_passes_clock_and_window():
    engine = MagicMock()
    engine.run_cycle.return_value = CycleReport(started_at=DAY0)
    scheduler = ReminderScheduler(engine, window=timedelta(hours=12), clock=lambda: DAY0)

    scheduler.run_now()

    engine.run_cycle.assert_called_once_with(DAY0, timedelta(hours=12))


def test_defaults_are_hourly_with_three_day_window():
    scheduler = ReminderScheduler(make_engine())

    assert scheduler.interval == timedelta(hours=1)
    assert scheduler.window == timedelta(days=3)


def test_state_tracks_cycles_and_failures():
    source = FakeSource([appt("A", 1)])
    scheduler = ReminderScheduler(make_engine(source), clock=lambda: DAY0)

    scheduler.run_now()
    source.error = "503 from upstream"
    scheduler.run_now()

    snapshot = scheduler.state.snapshot()
    assert snapshot["cycles"] == 2
    assert snapshot["failed_cycles"] == 1
    assert snapshot["last_run_at"] == DAY0.isoformat()
    assert snapshot["last_report"]["ok"] is False
    assert snapshot["running"] is False


def test_run_now_enters_app_context():
    app = MagicMock()
    scheduler = ReminderScheduler(make_engine(), app=app, clock=lambda: DAY0)

    scheduler.run_now()

    app.app_context.assert_called_once()
    app.app_context.return_value.__enter__.assert_called_once()


def test_overrun_is_counted_not_queued():
    scheduler = ReminderScheduler(make_engine())
    event = JobSubmissionEvent(EVENT_JOB_MAX_INSTANCES, JOB_ID, "default", [DAY0])

    scheduler._on_event(event)
    scheduler._on_event(event)

    assert scheduler.state.overruns == 2


def test_start_runs_first_cycle_immediately_then_stops():
    ran = threading.Event()
    engine = MagicMock()

    def run_cycle(now, window):
        ran.set()
        return CycleReport(started_at=now)

    engine.run_cycle.side_effect = run_cycle
    scheduler = ReminderScheduler(engine, interval=timedelta(hours=1))

    scheduler.start()
    try:
        assert scheduler.is_running
        assert ran.wait(timeout=10)
        job = scheduler._scheduler.get_job(JOB_ID)
        assert job.max_instances == 1
        assert job.coalesce is True
        scheduler.start()
    finally:
        scheduler.stop(wait=True)

    assert not scheduler.is_running
    assert engine.run_cycle.call_count == 1
    assert scheduler.state.cycles == 1
