# reminders/ledger.py
"""Durable record of which appointments have already been reminded.

The engine only asks three things of a ledger: whether an id is in it, to add
an id once its reminder went out, and to rebuild itself at startup. Entries are
never removed, so a ledger only ever grows.
"""
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from models import db, SentReminder
from reminders.errors import LoadError, PersistError

logger = logging.getLogger(__name__)


class Ledger(ABC):

    def __init__(self, ids=()):
        self._ids = set(ids)

    def __len__(self):
        return len(self._ids)

    def __contains__(self, appointment_id):
        return self.contains(appointment_id)

    def contains(self, appointment_id):
        return str(appointment_id) in self._ids

    def ids(self):
        return sorted(self._ids)

    def record(self, appointment_id):
        """Add ``appointment_id`` and flush it to storage before returning.

        The id only joins the in-memory set once the write succeeded, so a
        failed flush leaves the ledger exactly as it was.
        """
        appointment_id = str(appointment_id)
        if appointment_id in self._ids:
            return
        self._persist(appointment_id)
        self._ids.add(appointment_id)

    @abstractmethod
    def _persist(self, appointment_id):
        """Durably store one new id, raising PersistError on failure."""


# ========================================
# Line-delimited file
# ========================================
class FileLedger(Ledger):
    """One appointment id per line, appended and fsynced on every record."""

    def __init__(self, path, ids=()):
        super().__init__(ids)
        self.path = Path(path)

    @classmethod
    def load(cls, path):
        path = Path(path)
        if not path.exists():
            logger.info(f"No ledger at {path}, starting empty")
            return cls(path)

        try:
            with open(path, 'rb+') as f:
                data = f.read()
                complete = data.rfind(b'\n') + 1
                if complete < len(data):
                    # a crash mid-append leaves an unterminated fragment behind
                    logger.warning(f"Dropping partial ledger entry {data[complete:]!r} from {path}")
                    f.truncate(complete)
            text = data[:complete].decode('utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise LoadError(f"Could not read ledger {path}: {e}") from e

        ids = {line.strip() for line in text.splitlines() if line.strip()}
        logger.info(f"Loaded {len(ids)} reminded appointment(s) from {path}")
        return cls(path, ids)

    def _persist(self, appointment_id):
        if not appointment_id or '\n' in appointment_id or '\r' in appointment_id:
            raise PersistError(f"Refusing to record malformed appointment id {appointment_id!r}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(f"{appointment_id}\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise PersistError(f"Could not append {appointment_id} to {self.path}: {e}") from e


# ========================================
# SQL table (needs an app context)
# ========================================
class DatabaseLedger(Ledger):
    """Ledger kept in the ``sent_reminders`` table through Flask-SQLAlchemy."""

    @classmethod
    def load(cls):
        try:
            db.create_all()
            ids = [row.appointment_id for row in SentReminder.query.all()]
        except SQLAlchemyError as e:
            db.session.rollback()
            raise LoadError(f"Could not read sent_reminders table: {e}") from e
        logger.info(f"Loaded {len(ids)} reminded appointment(s) from database")
        return cls(ids)

    def _persist(self, appointment_id):
        try:
            db.session.add(SentReminder(appointment_id=appointment_id))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistError(f"Could not insert {appointment_id} into sent_reminders: {e}") from e
