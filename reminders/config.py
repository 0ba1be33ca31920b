# reminders/config.py
import os
from pathlib import Path

REQUIRED_SETTINGS = ('API_ROOT', 'API_KEY', 'SMTP_HOST', 'SMTP_USER', 'SMTP_PASS')
LEDGER_BACKENDS = ('file', 'database')

instance_path = Path("instance")


def _int(environ, name, default):
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _bool(environ, name, default):
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(environ=None):
    """Map REMINDERS_* environment variables onto Flask config keys."""
    if environ is None:
        environ = os.environ

    smtp_user = environ.get('REMINDERS_SMTP_USER')
    backend = environ.get('REMINDERS_LEDGER_BACKEND', 'file').strip().lower()
    if backend not in LEDGER_BACKENDS:
        raise ValueError(f"REMINDERS_LEDGER_BACKEND must be one of {', '.join(LEDGER_BACKENDS)}, got {backend!r}")

    status_port = _int(environ, 'REMINDERS_STATUS_PORT', None)

    return {
        'API_ROOT': (environ.get('REMINDERS_API_ROOT') or '').rstrip('/') or None,
        'API_KEY': environ.get('REMINDERS_API_KEY'),
        'SMTP_HOST': environ.get('REMINDERS_SMTP_HOST'),
        'SMTP_PORT': _int(environ, 'REMINDERS_SMTP_PORT', 587),
        'SMTP_USER': smtp_user,
        'SMTP_PASS': environ.get('REMINDERS_SMTP_PASS'),
        'SMTP_FROM': environ.get('REMINDERS_SMTP_FROM') or smtp_user,
        'SMTP_STARTTLS': _bool(environ, 'REMINDERS_SMTP_STARTTLS', True),
        'TIMEZONE': environ.get('REMINDERS_TIMEZONE', 'UTC'),
        'INTERVAL_SECONDS': _int(environ, 'REMINDERS_INTERVAL_SECONDS', 60 * 60),
        'WINDOW_HOURS': _int(environ, 'REMINDERS_WINDOW_HOURS', 3 * 24),
        'HTTP_TIMEOUT': _int(environ, 'REMINDERS_HTTP_TIMEOUT', 30),
        'LEDGER_BACKEND': backend,
        'LEDGER_PATH': environ.get('REMINDERS_LEDGER_PATH', str(instance_path / 'sent_reminders.txt')),
        'SQLALCHEMY_DATABASE_URI': environ.get(
            'DATABASE_URL',
            f"sqlite:///{(instance_path / 'reminders.db').resolve()}"
        ).replace('postgres://', 'postgresql://', 1),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STATUS_HOST': environ.get('REMINDERS_STATUS_HOST', '127.0.0.1'),
        'STATUS_PORT': status_port or None,
    }


def missing_settings(config):
    return [key for key in REQUIRED_SETTINGS if not config.get(key)]
