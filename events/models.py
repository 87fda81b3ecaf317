# events/models.py
from datetime import datetime
from extensions import db


class ProcessedEvent(db.Model):
    __tablename__ = "processed_events"
    __table_args__ = (
        db.UniqueConstraint("transaction_hash", "log_index", name="uq_processed_event_log"),
    )

    id               = db.Column(db.Integer, primary_key=True)
    transaction_hash = db.Column(db.String(66), nullable=False)
    log_index        = db.Column(db.Integer, nullable=False)
    event_name       = db.Column(db.String(64), nullable=False)
    loan_id          = db.Column(db.String(78), nullable=True, index=True)
    block_number     = db.Column(db.BigInteger, nullable=True, index=True)
    processed_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
            "event_name": self.event_name,
            "loan_id": self.loan_id,
            "block_number": self.block_number,
            "processed_at": self.processed_at.isoformat(),
        }


class EventCursor(db.Model):
    __tablename__ = "event_cursors"

    name       = db.Column(db.String(64), primary_key=True)
    last_block = db.Column(db.BigInteger, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class SqlEventStore:
    """ProcessedEvent/EventCursor persistence for the event listener (needs an app context)."""

    def is_processed(self, transaction_hash, log_index) -> bool:
        if transaction_hash is None or log_index is None:
            return False
        return db.session.query(ProcessedEvent.id).filter_by(
            transaction_hash=transaction_hash.lower(), log_index=int(log_index)
        ).first() is not None

    def mark_processed(self, decoded, loan_id=None) -> None:
        if decoded.transaction_hash is None or decoded.log_index is None:
            return
        db.session.add(ProcessedEvent(
            transaction_hash=decoded.transaction_hash.lower(),
            log_index=int(decoded.log_index),
            event_name=decoded.event_name,
            loan_id=None if loan_id is None else str(loan_id),
            block_number=decoded.block_number,
        ))
        self._commit()

    def get_cursor(self, name: str) -> int | None:
        row = db.session.get(EventCursor, name)
        return row.last_block if row else None

    def set_cursor(self, name: str, block_number: int) -> None:
        row = db.session.get(EventCursor, name)
        if row is None:
            db.session.add(EventCursor(name=name, last_block=int(block_number)))
        else:
            row.last_block = int(block_number)
        self._commit()

    @staticmethod
    def _commit() -> None:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
