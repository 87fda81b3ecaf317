# notifications/models.py
from datetime import datetime
from extensions import db


class NotificationLog(db.Model):
    __tablename__ = "notification_log"

    id           = db.Column(db.Integer, primary_key=True)
    loan_id      = db.Column(db.String(78), nullable=False, index=True)   # uint256 as text
    event_type   = db.Column(db.String(50), nullable=False, index=True)
    recipient_id = db.Column(db.String(64), nullable=True)
    status       = db.Column(db.String(16), nullable=False)               # sent|failed|skipped
    format_used  = db.Column(db.String(16), nullable=True)                # markdown|html|plain
    error        = db.Column(db.Text, nullable=True)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "loan_id": self.loan_id,
            "event_type": self.event_type,
            "recipient_id": self.recipient_id,
            "status": self.status,
            "format_used": self.format_used,
            "error": self.error,
            "created_at": self.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        }

    def __repr__(self) -> str:
        return f"<NotificationLog loan={self.loan_id} type={self.event_type} status={self.status}>"
