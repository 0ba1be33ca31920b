# reminders/notifier.py
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

from reminders.errors import SendError

logger = logging.getLogger(__name__)


class SmtpNotifier:

    def __init__(self, host, port=587, user=None, password=None, sender=None, starttls=True, timeout=30):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.starttls = starttls
        self.timeout = timeout

    def compose(self, reminder):
        msg = EmailMessage()
        msg['To'] = reminder.recipient
        msg['From'] = self.sender
        msg['Subject'] = reminder.subject
        msg['Date'] = formatdate(localtime=True)
        msg['Message-ID'] = make_msgid()
        msg.set_content(reminder.body)
        return msg

    def send(self, reminder):
        try:
            msg = self.compose(reminder)
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError, ValueError, TypeError) as e:
            # header injection or a malformed address surfaces as ValueError from EmailMessage
            raise SendError(f"SMTP delivery to {reminder.recipient} failed: {e}") from e
        logger.debug(f"Delivered '{reminder.subject}' to {reminder.recipient} via {self.host}")
