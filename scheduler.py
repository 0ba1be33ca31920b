# scheduler.py
import logging
import threading
from datetime import datetime, timedelta, timezone

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

JOB_ID = 'reminder_cycle'


def utcnow():
    return datetime.now(timezone.utc)


class SchedulerState:
    """Process-wide timing state, read by /health from the request thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at = None
        self.last_run_at = None
        self.last_report = None
        self.cycles = 0
        self.failed_cycles = 0
        self.overruns = 0
        self.running = False

    def cycle_started(self, now):
        with self._lock:
            self.last_run_at = now
            self.running = True

    def cycle_finished(self, report):
        with self._lock:
            self.running = False
            self.cycles += 1
            if report is None or not report.ok:
                self.failed_cycles += 1
            self.last_report = report

    def overrun(self):
        with self._lock:
            self.overruns += 1

    def snapshot(self):
        with self._lock:
            return {
                'started_at': self.started_at.isoformat() if self.started_at else None,
                'last_run_at': self.last_run_at.isoformat() if self.last_run_at else None,
                'last_report': self.last_report.to_dict() if self.last_report else None,
                'cycles': self.cycles,
                'failed_cycles': self.failed_cycles,
                'overruns': self.overruns,
                'running': self.running,
            }


class ReminderScheduler:
    """Runs ``engine.run_cycle`` now and then every ``interval``, never overlapping.

    APScheduler's ``max_instances=1`` drops a tick that fires while the previous
    cycle is still going; the drop is logged and counted, not queued.
    """

    def __init__(self, engine, interval=timedelta(hours=1), window=timedelta(days=3), app=None, clock=utcnow):
        self.engine = engine
        self.interval = interval
        self.window = window
        self.app = app
        self.clock = clock
        self.state = SchedulerState()
        self._scheduler = None

    @property
    def is_running(self):
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        if self.is_running:
            logger.warning("ReminderScheduler already running")
            return

        scheduler = BackgroundScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self.run_now,
            'interval',
            seconds=self.interval.total_seconds(),
            id=JOB_ID,
            name="Appointment reminders",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.add_listener(self._on_event, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_ERROR)
        scheduler.start()
        self._scheduler = scheduler
        self.state.started_at = self.clock()
        logger.info(f"ReminderScheduler started (interval={self.interval}, window={self.window})")

    def stop(self, wait=True):
        if self._scheduler is None:
            return
        # wait=True lets an in-flight cycle finish its ledger write
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("ReminderScheduler stopped")

    def run_now(self):
        now = self.clock()
        logger.info("Checking for reminders")
        self.state.cycle_started(now)
        report = None
        try:
            if self.app is not None:
                with self.app.app_context():
                    report = self.engine.run_cycle(now, self.window)
            else:
                report = self.engine.run_cycle(now, self.window)
        finally:
            self.state.cycle_finished(report)

        if report.ok:
            logger.info(f"Reminder cycle done: {report.summary()}")
        else:
            logger.warning(f"Reminder cycle aborted, retrying next tick: {report.error}")
        return report

    def _on_event(self, event):
        if event.code == EVENT_JOB_MAX_INSTANCES:
            self.state.overrun()
            missed = ", ".join(t.isoformat() for t in event.scheduled_run_times)
            logger.warning(f"Previous reminder cycle still running, skipping tick(s) at {missed}")
        elif event.code == EVENT_JOB_ERROR:
            logger.error(f"Reminder cycle crashed: {event.exception!r}", exc_info=event.exception)
