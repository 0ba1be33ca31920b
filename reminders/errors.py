# reminders/errors.py


class ReminderError(Exception):
    """Base class for everything the reminder service raises on purpose."""


class FetchError(ReminderError):
    """The appointment source was unreachable or returned malformed data."""


class SendError(ReminderError):
    """The notifier could not deliver one reminder."""


class PersistError(ReminderError):
    """The ledger could not durably record an appointment id."""


class LoadError(ReminderError):
    """The ledger could not be rebuilt from storage at startup."""
