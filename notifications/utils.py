# notifications/utils.py
from extensions import db
from notifications.models import NotificationLog
from notifications.dispatcher import STATUS_SENT


def record_dispatch(result) -> None:
    """Recorder hook for NotificationDispatcher (needs an app context)."""
    row = NotificationLog(
        loan_id=str(result.loan_id),
        event_type=result.notification_type,
        recipient_id=None if result.recipient_id is None else str(result.recipient_id),
        status=result.status,
        format_used=result.format,
        error=result.error,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except Exception:
        # leave the shared session usable for the rest of the batch
        db.session.rollback()
        raise


def was_delivered(loan_id, event_type: str) -> bool:
    return db.session.query(NotificationLog.id).filter_by(
        loan_id=str(loan_id), event_type=event_type, status=STATUS_SENT
    ).first() is not None


def recent_notifications(limit: int = 50):
    rows = NotificationLog.query.order_by(NotificationLog.created_at.desc()).limit(limit).all()
    return [r.to_dict() for r in rows]
