"""CRUD operations for the reminder store.

Reminders are created, listed and deleted per user JID. Nothing in the bot
delivers reminders at their due time; they stay pending until cancelled.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import List, Optional
import uuid
from datetime import datetime, timezone

from config import settings
from database import Reminder, StatusEnum, create_tables, SessionLocal
from logger_config import setup_logger

logger = setup_logger(__name__, 'crud.log')


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC; naive values are read in the bot timezone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=settings.tz)
    return value.astimezone(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a datetime loaded from SQLite, which drops tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_reminder(
    db: Session,
    chat_jid: str,
    user_jid: str,
    text: str,
    due_at: datetime
) -> Reminder:
    """Create a new pending reminder.

    Args:
        db: Database session
        chat_jid: Chat the request came from
        user_jid: Owner of the reminder
        text: Reminder message
        due_at: When it is due (naive values are taken as bot-local time)

    Returns:
        Reminder: Created reminder row
    """
    now = datetime.now(timezone.utc)

    db_reminder = Reminder(
        id=str(uuid.uuid4()),
        chat_jid=chat_jid,
        user_jid=user_jid,
        text=text,
        due_at=to_utc(due_at),
        status=StatusEnum.PENDING,
        created_at=now,
        updated_at=now
    )

    db.add(db_reminder)
    db.commit()
    db.refresh(db_reminder)
    logger.info(f"Reminder {db_reminder.id} created for {user_jid}")
    return db_reminder


def get_user_reminders(
    db: Session,
    user_jid: str,
    status: Optional[str] = None,
    limit: int = 50
) -> List[Reminder]:
    """Get reminders for a user, soonest first.

    Args:
        db: Database session
        user_jid: Owner JID
        status: Optional status filter (pending, sent, cancelled)
        limit: Maximum number of results
    """
    query = db.query(Reminder).filter(Reminder.user_jid == user_jid)

    if status:
        query = query.filter(Reminder.status == StatusEnum[status.upper()])

    return query.order_by(Reminder.due_at.asc()).limit(limit).all()


def get_reminder(db: Session, reminder_id: str, user_jid: str) -> Optional[Reminder]:
    """Get a reminder by full ID or by a unique ID prefix.

    Replies show only the first 8 characters of an ID, so users cancel with
    those. A prefix matching more than one of the user's reminders is
    treated as not found.
    """
    reminder_id = reminder_id.strip()
    if not reminder_id:
        return None

    exact = db.query(Reminder).filter(
        Reminder.id == reminder_id,
        Reminder.user_jid == user_jid
    ).first()
    if exact:
        return exact

    matches = db.query(Reminder).filter(
        Reminder.id.startswith(reminder_id, autoescape=True),
        Reminder.user_jid == user_jid
    ).limit(2).all()
    if len(matches) == 1:
        return matches[0]
    return None


def delete_reminder(db: Session, reminder_id: str, user_jid: str) -> bool:
    """Delete one of the user's pending reminders.

    Returns:
        bool: True if deleted, False if not found, not owned or not pending
    """
    reminder = get_reminder(db, reminder_id, user_jid)
    if not reminder or reminder.status != StatusEnum.PENDING:
        return False

    db.delete(reminder)
    db.commit()
    logger.info(f"Reminder {reminder.id} deleted by {user_jid}")
    return True


def count_pending(db: Session) -> int:
    return db.query(Reminder).filter(Reminder.status == StatusEnum.PENDING).count()


def get_known_users(db: Session) -> List[str]:
    """Distinct JIDs that have ever created a reminder."""
    rows = db.query(Reminder.user_jid).group_by(Reminder.user_jid).order_by(
        func.min(Reminder.created_at)
    ).all()
    return [row[0] for row in rows]


def init_reminder_system(session_factory=SessionLocal, bind=None) -> int:
    """Create the reminder tables and report how many reminders are pending."""
    create_tables(bind)
    db = session_factory()
    try:
        pending = count_pending(db)
    finally:
        db.close()
    logger.info(f"Reminder system initialized. Pending reminders: {pending}")
    return pending
