"""MCP Server for Remo Bot reminders.

Lets AI agents add, list and cancel a WhatsApp user's reminders using the
same natural-language rules as the chat commands. Shares the bot's database.

Transport Support:
- stdio: Standard input/output (local process communication)
- sse: Server-Sent Events over HTTP (network access)
"""

from mcp.server.fastmcp import FastMCP
import os

import crud
import database
from config import settings
from formatting import format_datetime_full, format_datetime_med
from logger_config import setup_logger
from time_parser import parse_natural_time

logger = setup_logger(__name__, 'mcp.log')

mcp = FastMCP(
    "RemoBot",
    host=settings.MCP_HOST,
    port=settings.MCP_PORT
)


@mcp.tool()
def add_reminder(user_jid: str, text: str) -> str:
    """Create a reminder from natural language.

    Args:
        user_jid: WhatsApp JID of the owner (e.g. "8801712345678@s.whatsapp.net")
        text: Request such as "in 2 hours call mom" or "tomorrow 9am meeting"

    Returns:
        Confirmation with the reminder ID and due time, or an error message
    """
    parsed = parse_natural_time(text)
    if parsed is None:
        return "✗ Could not understand the time in that request"

    db = database.SessionLocal()
    try:
        reminder = crud.create_reminder(db, user_jid, user_jid, parsed.message, parsed.due_at)
        logger.info(f"📝 Reminder {reminder.id} created for {user_jid} via MCP")
        return (
            f"✓ Reminder created successfully!\n"
            f"ID: {reminder.id}\n"
            f"Message: {reminder.text}\n"
            f"Due: {format_datetime_full(crud.as_utc(reminder.due_at))}"
        )
    except Exception as e:
        logger.error(f"Error creating reminder via MCP: {e}")
        return f"✗ Error creating reminder: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def list_reminders(user_jid: str) -> str:
    """List a user's pending reminders, soonest first."""
    db = database.SessionLocal()
    try:
        reminders = crud.get_user_reminders(db, user_jid, status="pending")
        if not reminders:
            return f"No pending reminders for {user_jid}"

        result = [f"Pending reminders for {user_jid} ({len(reminders)}):"]
        for r in reminders:
            result.append(
                f"\n• {r.text}\n"
                f"  ID: {r.id}\n"
                f"  Due: {format_datetime_med(crud.as_utc(r.due_at))}"
            )
        return "\n".join(result)
    finally:
        db.close()


@mcp.tool()
def cancel_reminder(reminder_id: str, user_jid: str) -> str:
    """Cancel a pending reminder by full ID or 8-character prefix."""
    db = database.SessionLocal()
    try:
        if crud.delete_reminder(db, reminder_id, user_jid):
            return f"✓ Reminder {reminder_id} cancelled"
        return f"✗ Reminder {reminder_id} not found"
    finally:
        db.close()


if __name__ == "__main__":
    database.create_tables()
    transport = os.getenv("MCP_TRANSPORT", settings.MCP_TRANSPORT).lower()

    if transport == "sse":
        logger.info(f"Starting MCP server with SSE transport on {settings.MCP_HOST}:{settings.MCP_PORT}")
        mcp.run(transport="sse")
    else:
        logger.info("Starting MCP server with stdio transport")
        mcp.run(transport="stdio")
