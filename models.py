# models.py
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()


# ========================================
# 1. SentReminder
# ========================================
class SentReminder(db.Model):
    __tablename__ = 'sent_reminders'

    appointment_id = db.Column(db.String(64), primary_key=True)
    sent_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<SentReminder {self.appointment_id}>"
