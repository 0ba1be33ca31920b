from flask import Flask, current_app, jsonify
from datetime import timedelta
from dotenv import load_dotenv
from pathlib import Path
import argparse, logging, os, signal, threading

from models import db
from reminders.config import load_config, missing_settings
from reminders.engine import ReminderEngine
from reminders.errors import LoadError
from reminders.ledger import DatabaseLedger, FileLedger
from reminders.notifier import SmtpNotifier
from reminders.source import EasyAppointmentsSource
from scheduler import ReminderScheduler

# ===========================
# LOAD ENV
# ===========================
load_dotenv()

logger = logging.getLogger(__name__)


# ===========================
# LOGGING
# ===========================
def configure_logging(debug=False):
    level = logging.DEBUG if debug else os.getenv('REMINDERS_LOG_LEVEL', 'INFO').upper()
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if not debug:
        logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logger.debug("Logging configured")


# ===========================
# APP SETUP
# ===========================
def create_app(overrides=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if overrides:
        app.config.update(overrides)

    db.init_app(app)

    @app.route('/health')
    def health():
        scheduler = current_app.extensions.get('reminder_scheduler')
        if scheduler is None:
            return jsonify({'status': 'idle'})

        snapshot = scheduler.state.snapshot()
        last = snapshot['last_report']
        return jsonify({
            'status': 'degraded' if last and not last['ok'] else 'ok',
            'ledger_size': len(scheduler.engine.ledger),
            **snapshot,
        })

    return app


# ===========================
# WIRING
# ===========================
def build_ledger(app):
    """Load the dedup ledger configured for ``app``; needs an app context for the database backend."""
    if app.config['LEDGER_BACKEND'] == 'database':
        url = db.engine.url
        if url.drivername == 'sqlite' and url.database not in (None, '', ':memory:'):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return DatabaseLedger.load()
    return FileLedger.load(app.config['LEDGER_PATH'])


def build_engine(app, ledger):
    cfg = app.config
    source = EasyAppointmentsSource(
        cfg['API_ROOT'],
        cfg['API_KEY'],
        timezone=cfg['TIMEZONE'],
        timeout=cfg['HTTP_TIMEOUT'],
    )
    notifier = SmtpNotifier(
        cfg['SMTP_HOST'],
        port=cfg['SMTP_PORT'],
        user=cfg['SMTP_USER'],
        password=cfg['SMTP_PASS'],
        sender=cfg['SMTP_FROM'],
        starttls=cfg['SMTP_STARTTLS'],
        timeout=cfg['HTTP_TIMEOUT'],
    )
    return ReminderEngine(source, notifier, ledger)


def build_scheduler(app, engine):
    scheduler = ReminderScheduler(
        engine,
        interval=timedelta(seconds=app.config['INTERVAL_SECONDS']),
        window=timedelta(hours=app.config['WINDOW_HOURS']),
        app=app,
    )
    app.extensions['reminder_scheduler'] = scheduler
    return scheduler


# ===========================
# CLI
# ===========================
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Easy!Appointments appointment reminders.")
    parser.add_argument('-d', '--debug', action='store_true', help="Enable debug logging")
    parser.add_argument('--once', action='store_true', help="Run a single reminder cycle and exit")
    return parser.parse_args(argv)


def _terminate(signum, frame):
    raise SystemExit(0)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.debug)

    try:
        app = create_app()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    missing = missing_settings(app.config)
    if missing:
        logger.error(f"Missing env vars: {', '.join('REMINDERS_' + key for key in missing)}")
        return 1

    with app.app_context():
        try:
            ledger = build_ledger(app)
        except LoadError as e:
            logger.error(f"Cannot determine which reminders were already sent, refusing to start: {e}")
            return 1

    try:
        engine = build_engine(app, ledger)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    scheduler = build_scheduler(app, engine)

    if args.once:
        report = scheduler.run_now()
        return 0 if report.ok else 1

    signal.signal(signal.SIGTERM, _terminate)
    scheduler.start()
    try:
        if app.config['STATUS_PORT']:
            app.run(host=app.config['STATUS_HOST'], port=app.config['STATUS_PORT'], debug=False, use_reloader=False)
        else:
            threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        scheduler.stop(wait=True)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
