"""FastAPI status server for Remo Bot.

Exposes connection health, the current pairing QR code (so the device can be
linked from a browser on a headless host), the admin list and per-user
reminders. The bot process serves this app in the same event loop as the
connection manager; see main.py.
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional

import admin
import crud
import schemas
import database
from config import settings
from logger_config import setup_logger

logger = setup_logger(__name__, 'api.log')

app = FastAPI(
    title=f"{settings.BOT_NAME} Bot Status API",
    description="Connection status, QR pairing and reminder inspection for the WhatsApp reminder bot",
    version=settings.BOT_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Set by main.py once the connection manager exists
_connection = None


def attach_connection(connection) -> None:
    """Register the ConnectionManager whose state the API reports."""
    global _connection
    _connection = connection


def _current_status() -> schemas.ConnectionStatus:
    return schemas.ConnectionStatus(
        status=_connection.status if _connection else "stopped",
        connected=bool(_connection and _connection.connected),
        bot_name=settings.BOT_NAME,
        timezone=settings.TIMEZONE,
        has_qr=bool(_connection and _connection.latest_qr),
    )


@app.get("/")
def root():
    """Root endpoint - service information"""
    return {
        "service": f"{settings.BOT_NAME} Bot",
        "version": settings.BOT_VERSION,
        "status": _current_status().status,
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "qr": "/qr",
            "admins": "/admins",
            "reminders": "/reminders"
        }
    }


@app.get("/health", response_model=schemas.ConnectionStatus)
def health_check():
    """Health check endpoint for monitoring"""
    return _current_status()


@app.get("/qr")
def get_qr():
    """Latest pairing QR code as a PNG data URL."""
    if not _connection or not _connection.latest_qr:
        raise HTTPException(status_code=404, detail="No QR code available")
    return {"status": _connection.status, "qr": _connection.latest_qr}


@app.get("/admins", response_model=schemas.AdminList)
def list_admins():
    return admin.get_admin_list()


@app.get("/reminders", response_model=List[schemas.ReminderResponse])
def list_reminders(
    user_jid: str = Query(..., description="Owner JID, e.g. 8801712345678@s.whatsapp.net"),
    status: Optional[str] = Query(None, pattern="^(pending|sent|cancelled)$", description="Filter by status"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of results"),
    db: Session = Depends(database.get_db)
):
    """List a user's reminders, soonest first."""
    reminders = crud.get_user_reminders(db, user_jid, status, limit)
    return [
        schemas.ReminderResponse(
            id=r.id,
            chat_jid=r.chat_jid,
            user_jid=r.user_jid,
            text=r.text,
            due_at=r.due_at,
            status=r.status.value,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )
        for r in reminders
    ]


@app.delete("/reminders/{reminder_id}", status_code=200)
def delete_reminder(
    reminder_id: str,
    user_jid: str = Query(..., description="Owner JID (for security)"),
    db: Session = Depends(database.get_db)
):
    """Cancel a pending reminder by full ID or its 8-character prefix."""
    if not crud.delete_reminder(db, reminder_id, user_jid):
        raise HTTPException(status_code=404, detail="Reminder not found")
    logger.info(f"Reminder {reminder_id} deleted via API")
    return {"message": "Reminder deleted successfully", "reminder_id": reminder_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )
