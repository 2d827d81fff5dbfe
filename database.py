"""Database module for Remo Bot reminders.

This module defines the SQLAlchemy model and database session management.
IMPORTANT: due_at is stored as a DateTime object in UTC, NOT a string.
"""

import os

from sqlalchemy import create_engine, Column, String, DateTime, Enum as SQLEnum, Index
from sqlalchemy.orm import declarative_base, sessionmaker
import enum

from config import settings

# SQLAlchemy Base
Base = declarative_base()


class StatusEnum(enum.Enum):
    """Status values for reminders"""
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


class Reminder(Base):
    """Reminder model.

    Reminders are keyed by the JID of the user who asked for them. chat_jid
    records where the request came from (a private chat or a group).
    """

    __tablename__ = "reminders"

    id = Column(String, primary_key=True, doc="Unique reminder ID (UUID)")

    chat_jid = Column(String, nullable=False, doc="Chat the reminder was requested in")
    user_jid = Column(String, nullable=False, index=True, doc="Owner of the reminder")

    text = Column(String, nullable=False, doc="Reminder message")

    due_at = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="When the reminder is due (UTC)"
    )

    status = Column(SQLEnum(StatusEnum), default=StatusEnum.PENDING, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_user_status', 'user_jid', 'status'),
        Index('idx_user_due', 'user_jid', 'due_at'),
    )

    def __repr__(self):
        return (
            f"<Reminder(id={self.id}, user={self.user_jid}, "
            f"text={self.text}, due={self.due_at}, status={self.status.value})>"
        )


def _make_engine(url: str):
    if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
        db_dir = os.path.dirname(url[len("sqlite:///"):])
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if "sqlite" in url else {},
        echo=False
    )


engine = _make_engine(settings.DATABASE_URL)

# Session Factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    Base.metadata.create_all(bind=bind or engine)
