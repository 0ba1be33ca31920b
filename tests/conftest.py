from datetime import datetime, timedelta, timezone

import pytest

from reminders.engine import Appointment
from reminders.errors import FetchError, PersistError, SendError
from reminders.ledger import FileLedger, Ledger

DAY0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
WINDOW = timedelta(days=3)


def appt(id, days, email=None, **kwargs):
    return Appointment(id=id, start=DAY0 + timedelta(days=days), email=email or f"{id.lower()}@x.com", **kwargs)


class FakeSource:

    def __init__(self, appointments=(), error=None):
        self.appointments = list(appointments)
        self.error = error
        self.calls = 0

    def fetch_upcoming(self):
        self.calls += 1
        if self.error:
            raise FetchError(self.error)
        return list(self.appointments)


class FakeNotifier:

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, reminder):
        if reminder.recipient in self.fail_for:
            raise SendError(f"mailbox {reminder.recipient} unavailable")
        self.sent.append(reminder)

    @property
    def recipients(self):
        return [r.recipient for r in self.sent]


class MemoryLedger(Ledger):
    """Ledger that can be told to fail its next writes."""

    def __init__(self, ids=(), fail_writes=0):
        super().__init__(ids)
        self.fail_writes = fail_writes

    def _persist(self, appointment_id):
        if self.fail_writes:
            self.fail_writes -= 1
            raise PersistError("disk full")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "sent_reminders.txt"


@pytest.fixture
def file_ledger(ledger_path):
    return FileLedger.load(ledger_path)
