# reminders/engine.py
"""One fetch-filter-send-record pass over upcoming appointments."""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

from reminders.errors import FetchError, PersistError, SendError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Appointment:
    id: str
    start: datetime
    email: Optional[str] = None
    customer_name: Optional[str] = None
    service_name: Optional[str] = None
    location: Optional[str] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class RenderedReminder:
    recipient: str
    subject: str
    body: str


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    ok: bool = True
    error: Optional[str] = None
    fetched: int = 0
    due: int = 0
    skipped: int = 0
    sent: int = 0
    failed: int = 0
    unrecorded: int = 0
    failures: list = field(default_factory=list)

    def to_dict(self):
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat()
        data['finished_at'] = self.finished_at.isoformat() if self.finished_at else None
        return data

    def summary(self):
        if not self.ok:
            return f"cycle failed: {self.error}"
        return (f"fetched={self.fetched} due={self.due} skipped={self.skipped} "
                f"sent={self.sent} failed={self.failed} unrecorded={self.unrecorded}")


def render_reminder(appointment):
    when = appointment.start.strftime('%A %d %B %Y at %H:%M')
    name = appointment.customer_name or 'there'
    what = f"your {appointment.service_name} appointment" if appointment.service_name else "your appointment"

    lines = [
        f"Hi {name},",
        "",
        f"This is a reminder that {what} is on {when}.",
    ]
    if appointment.location:
        lines.append(f"Location: {appointment.location}")
    lines += ["", "If you can no longer make it, please let us know.", ""]

    return RenderedReminder(
        recipient=appointment.email,
        subject=f"Appointment reminder: {appointment.start.strftime('%d %b %Y %H:%M')}",
        body="\n".join(lines),
    )


class ReminderEngine:

    def __init__(self, source, notifier, ledger, render=render_reminder):
        self.source = source
        self.notifier = notifier
        self.ledger = ledger
        self.render = render

    def due_appointments(self, appointments, now, window):
        """Unique appointments starting within ``[now, now + window]``, ordered by start then id."""
        horizon = now + window
        unique = {}
        for appt in appointments:
            if now <= appt.start <= horizon:
                unique.setdefault(appt.id, appt)
        return sorted(unique.values(), key=lambda appt: (appt.start, appt.id))

    def run_cycle(self, now, window):
        report = CycleReport(started_at=now)

        try:
            appointments = list(self.source.fetch_upcoming())
        except FetchError as e:
            logger.error(f"Could not fetch appointments: {e}")
            report.ok = False
            report.error = str(e)
            report.finished_at = datetime.now(timezone.utc)
            return report

        report.fetched = len(appointments)
        due = self.due_appointments(appointments, now, window)
        report.due = len(due)
        logger.debug(f"{report.due} of {report.fetched} appointment(s) due before {now + window}")

        for appt in due:
            if self.ledger.contains(appt.id):
                logger.debug(f"Appointment {appt.id} already reminded, skipping")
                report.skipped += 1
                continue

            try:
                self._send(appt)
            except SendError as e:
                logger.warning(f"Reminder for appointment {appt.id} not sent: {e}")
                report.failed += 1
                report.failures.append(appt.id)
                continue
            report.sent += 1
            logger.info(f"Sent reminder for appointment {appt.id} to {appt.email}")

            try:
                self.ledger.record(appt.id)
            except PersistError as e:
                logger.error(f"Reminder for appointment {appt.id} sent but not recorded, it may be sent again: {e}")
                report.unrecorded += 1

        report.finished_at = datetime.now(timezone.utc)
        return report

    def _send(self, appt):
        if not appt.email:
            raise SendError(f"appointment {appt.id} has no creator email address")
        self.notifier.send(self.render(appt))
