"""Command dispatcher for Remo Bot.

Every inbound text message goes through CommandDispatcher.handle(). The text
is matched against a fixed command table (both "!" and "/" prefixes are
accepted), then against the natural-language reminder keywords. Replies and
side messages (promotion notices, broadcasts) go out through a Messenger,
which in production is the ConnectionManager.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import admin
import crud
from config import settings
from database import SessionLocal
from formatting import (
    format_date_full,
    format_datetime_full,
    format_datetime_med,
    format_jid,
    format_relative,
    format_time_with_seconds,
    format_uptime,
    phone_to_jid,
)
from logger_config import setup_logger
from time_parser import parse_natural_time

logger = setup_logger(__name__, 'bot.log')

PREFIXES = ('!', '/')
NATURAL_KEYWORDS = ('remind me', 'reminder', 'alarm')
BD_PHONE_PREFIX = '880'
BD_PHONE_LENGTH = 13


class Messenger(Protocol):
    async def send_text(self, jid: str, text: str) -> None:
        ...


@dataclass
class IncomingMessage:
    jid: str
    sender: str
    text: str
    push_name: str = 'User'
    is_group: bool = False
    message_type: str = 'conversation'


def _is_command(lower: str, name: str) -> bool:
    return lower in (f"!{name}", f"/{name}")


def _starts_command(lower: str, name: str) -> bool:
    return lower.startswith((f"!{name}", f"/{name}"))


def _argument(text: str) -> str:
    """Everything after the command word."""
    parts = text.split(' ', 1)
    return parts[1].strip() if len(parts) > 1 else ''


def _digits(value: str) -> str:
    return ''.join(ch for ch in value if ch.isdigit())


def _valid_bd_number(number: str) -> bool:
    return number.startswith(BD_PHONE_PREFIX) and len(number) == BD_PHONE_LENGTH


class CommandDispatcher:
    """Routes text commands to handlers and sends the replies."""

    def __init__(
        self,
        messenger: Messenger,
        *,
        is_connected: Callable[[], bool] = lambda: False,
        started_at: Optional[float] = None,
        session_factory=SessionLocal,
        now: Optional[Callable[[], datetime]] = None,
        broadcast_delay: Optional[float] = None,
    ):
        self.messenger = messenger
        self.is_connected = is_connected
        self.started_at = started_at if started_at is not None else time.monotonic()
        self.session_factory = session_factory
        self.now = now or (lambda: datetime.now(settings.tz))
        self.broadcast_delay = (
            settings.BROADCAST_DELAY_SECONDS if broadcast_delay is None else broadcast_delay
        )

    async def reply(self, jid: str, text: str) -> None:
        await self.messenger.send_text(jid, text)

    async def handle(self, message: IncomingMessage) -> None:
        """Dispatch one message. Errors are reported back to the chat."""
        try:
            await self._route(message)
        except Exception as e:
            logger.error(f"Error handling command from {message.push_name}: {e}", exc_info=True)
            try:
                await self.reply(
                    message.jid,
                    "⚠️ An error occurred while processing your command.\n\n"
                    f"Error: {e}\n\n"
                    "Please try again or contact the bot administrator."
                )
            except Exception as send_error:
                logger.error(f"Failed to send error message: {send_error}")

    async def _route(self, message: IncomingMessage) -> None:
        text = message.text.strip()
        lower = text.lower()
        jid, sender = message.jid, message.sender

        is_user_admin = admin.is_admin(sender)
        is_user_creator = admin.is_creator(sender)

        if _is_command(lower, 'ping'):
            await self.reply(jid, '🏓 Pong!')
        elif _is_command(lower, 'help') or lower == '!start':
            await self.send_help(jid, is_user_admin, message.is_group)
        elif _is_command(lower, 'info'):
            await self.send_info(jid)
        elif _is_command(lower, 'time'):
            await self.send_time(jid)
        elif _is_command(lower, 'admins'):
            await self.handle_admins(jid, is_user_admin)
        elif _starts_command(lower, 'promote'):
            await self.handle_promote(jid, sender, text, is_user_admin, is_user_creator)
        elif _starts_command(lower, 'demote'):
            await self.handle_demote(jid, sender, text, is_user_admin, is_user_creator)
        elif _starts_command(lower, 'broadcast'):
            await self.handle_broadcast(jid, sender, text, is_user_admin)
        elif _starts_command(lower, 'addreminder'):
            await self.handle_add_reminder(jid, sender, text, message.push_name)
        elif _starts_command(lower, 'myreminders'):
            await self.handle_my_reminders(jid, sender)
        elif _starts_command(lower, 'cancelreminder'):
            await self.handle_cancel_reminder(jid, sender, text)
        elif any(keyword in lower for keyword in NATURAL_KEYWORDS):
            await self.handle_natural_reminder(jid, sender, text, message.push_name)
        elif text.startswith(PREFIXES):
            await self.reply(
                jid,
                "❓ Unknown command. Type *!help* to see available commands.\n\n"
                "_Did you mean to set a reminder? Try: \"remind me in 2 hours to call mom\"_"
            )

    # -- informational commands -------------------------------------------

    async def send_help(self, jid: str, is_user_admin: bool, is_group: bool) -> None:
        help_text = (
            f"🤖 *{settings.BOT_NAME} – WhatsApp Reminder Bot*\n\n"
            "📝 *Available Commands:*\n\n"
            "• *!help* - Show this message\n"
            "• *!info* - Bot information\n"
            f"• *!time* - Current time ({settings.TIMEZONE})\n"
            "• *!ping* - Check if bot is alive\n"
            "• *!admins* - List bot admins (admin only)\n\n"
            "⏰ *Reminder Commands:*\n"
            "• *!addreminder <time> <message>* - Add a reminder\n"
            "• *!myreminders* - List your reminders\n"
            "• *!cancelreminder <id>* - Cancel a reminder\n\n"
            "💬 *Natural Language Examples:*\n"
            "• remind me in 2 hours to call mom\n"
            "• remind me tomorrow 9am drink water\n"
            "• reminder every day at 8pm take medicine\n"
        )

        if is_user_admin:
            help_text += (
                "\n👑 *Admin Commands:*\n"
                "• *!promote <number>* - Promote user to admin\n"
                "• *!demote <number>* - Demote user from admin\n"
                "• *!broadcast <message>* - Broadcast to all admins\n"
            )

        if is_group:
            help_text += "\n📌 *Note:* In groups, mention the bot or use commands in replies."

        help_text += f"\n\n_Developer: {settings.CREATOR_NAME}_"
        await self.reply(jid, help_text)

    async def send_info(self, jid: str) -> None:
        now = self.now()
        uptime = format_uptime(time.monotonic() - self.started_at)
        status = 'Connected ✅' if self.is_connected() else 'Disconnected ❌'

        await self.reply(
            jid,
            f"🤖 *{settings.BOT_NAME} Bot Information*\n\n"
            f"• Creator: {settings.CREATOR_NAME}\n"
            f"• Version: {settings.BOT_VERSION}\n"
            f"• Timezone: {settings.TIMEZONE}\n"
            f"• Current Time: {format_datetime_full(now)}\n"
            f"• Uptime: {uptime}\n"
            f"• Status: {status}\n"
            "• Storage: JSON admin list + SQL reminders"
        )

    async def send_time(self, jid: str) -> None:
        now = self.now()
        await self.reply(
            jid,
            "⏰ *Current Time*\n\n"
            f"• Date: {format_date_full(now)}\n"
            f"• Time: {format_time_with_seconds(now)}\n"
            f"• Timezone: {settings.TIMEZONE}\n"
            f"• Day: {now.strftime('%A')}\n\n"
            f"_Day {now.timetuple().tm_yday} of {now.year}_"
        )

    # -- admin commands -----------------------------------------------------

    async def handle_admins(self, jid: str, is_user_admin: bool) -> None:
        if not is_user_admin:
            await self.reply(jid, "⛔ This command is only available to administrators.")
            return

        admin_list = admin.get_admin_list()
        text = f"👑 *{settings.BOT_NAME} Admin List*\n\n"
        text += f"• *Creator:* {format_jid(admin_list.creator)}\n\n"

        if admin_list.admins:
            text += "• *Administrators:*\n"
            for index, admin_jid in enumerate(admin_list.admins, start=1):
                text += f"  {index}. {format_jid(admin_jid)}\n"
            text += f"\n_Total admins: {len(admin_list.admins)}_"
        else:
            text += "• *Administrators:* None (only creator)\n"
            text += "\n_Use !promote <number> to add administrators_"

        await self.reply(jid, text)

    async def _check_role_change(
        self, jid: str, is_user_admin: bool, is_user_creator: bool
    ) -> bool:
        if not is_user_admin:
            await self.reply(jid, "⛔ Admin commands are restricted to administrators only.")
            return False
        if not is_user_creator:
            await self.reply(jid, "⛔ Only the creator can promote/demote administrators.")
            return False
        return True

    async def _notify(self, jid: str, text: str, failure_note: str) -> None:
        try:
            await self.reply(jid, text)
        except Exception as e:
            logger.warning(f"{failure_note}: {e}")

    async def handle_promote(
        self, jid: str, sender: str, text: str, is_user_admin: bool, is_user_creator: bool
    ) -> None:
        if not await self._check_role_change(jid, is_user_admin, is_user_creator):
            return

        parts = text.split()
        if len(parts) < 2:
            await self.reply(
                jid,
                "📝 *Usage:* !promote <phone_number>\n\n"
                "*Example:* !promote 8801712345678\n"
                "*Note:* Use Bangladeshi numbers (8801XXXXXXXXX)"
            )
            return

        number = _digits(parts[1])
        if not _valid_bd_number(number):
            await self.reply(
                jid,
                "❌ Invalid Bangladeshi phone number format.\n\n"
                "*Required:* 8801XXXXXXXXX (13 digits total)\n"
                f"*You entered:* {number or 'empty'}"
            )
            return

        target_jid = phone_to_jid(number)
        result = admin.promote_admin(sender, target_jid)
        await self.reply(jid, result.message)

        if result.success:
            await self._notify(
                target_jid,
                "👑 *You have been promoted to Administrator!*\n\n"
                f"Congratulations! You now have administrator privileges in {settings.BOT_NAME} Bot.\n\n"
                "• You can use admin commands\n"
                "• You can manage reminders\n"
                "• Type !help to see all commands\n\n"
                f"_Promoted by: {format_jid(sender)}_",
                f"Could not notify promoted user {target_jid}"
            )
            logger.info(f"Promoted {target_jid} to admin")

    async def handle_demote(
        self, jid: str, sender: str, text: str, is_user_admin: bool, is_user_creator: bool
    ) -> None:
        if not await self._check_role_change(jid, is_user_admin, is_user_creator):
            return

        parts = text.split()
        if len(parts) < 2:
            await self.reply(
                jid,
                "📝 *Usage:* !demote <phone_number>\n\n"
                "*Example:* !demote 8801712345678"
            )
            return

        number = _digits(parts[1])
        if not _valid_bd_number(number):
            await self.reply(jid, "❌ Invalid Bangladeshi phone number format.")
            return

        target_jid = phone_to_jid(number)
        result = admin.demote_admin(sender, target_jid)
        await self.reply(jid, result.message)

        if result.success:
            await self._notify(
                target_jid,
                "📉 *Your Administrator privileges have been removed.*\n\n"
                f"You no longer have administrator access in {settings.BOT_NAME} Bot.\n\n"
                f"_Demoted by: {format_jid(sender)}_",
                f"Could not notify demoted user {target_jid}"
            )

    async def handle_broadcast(
        self, jid: str, sender: str, text: str, is_user_admin: bool
    ) -> None:
        if not is_user_admin:
            await self.reply(jid, "⛔ Admin commands are restricted.")
            return

        body = _argument(text)
        if not body:
            await self.reply(
                jid,
                "📝 *Usage:* !broadcast <message>\n\n"
                "*Example:* !broadcast Bot will be offline for maintenance at 10PM"
            )
            return

        broadcast_text = (
            f"📢 *Broadcast from {settings.BOT_NAME} Bot*\n\n"
            f"{body}\n\n"
            f"_Sent by: {format_jid(sender)}_"
        )

        recipients = [settings.CREATOR_JID]
        for admin_jid in admin.get_admin_list().admins:
            if admin_jid not in (settings.CREATOR_JID, sender) and admin_jid not in recipients:
                recipients.append(admin_jid)

        delivered = 0
        for index, recipient in enumerate(recipients):
            if index and self.broadcast_delay:
                await asyncio.sleep(self.broadcast_delay)
            try:
                await self.reply(recipient, broadcast_text)
                delivered += 1
            except Exception as e:
                logger.warning(f"Could not broadcast to {format_jid(recipient)}: {e}")

        await self.reply(jid, f"✅ Broadcast sent to {delivered} recipients.")

    # -- reminder commands --------------------------------------------------

    async def _in_session(self, operation, *args):
        """Run a blocking crud call with its own session in a worker thread.

        The event loop is shared with the bridge reader and the status API.
        """
        def work():
            db = self.session_factory()
            try:
                return operation(db, *args)
            finally:
                db.close()

        return await asyncio.to_thread(work)

    async def _create_reminder(self, jid: str, sender: str, request: str):
        parsed = parse_natural_time(request, now=self.now())
        if parsed is None:
            return None
        return await self._in_session(crud.create_reminder, jid, sender, parsed.message, parsed.due_at)

    async def handle_add_reminder(self, jid: str, sender: str, text: str, push_name: str) -> None:
        request = _argument(text)
        if not request:
            await self.reply(
                jid,
                "📝 *Usage:* !addreminder <time> <message>\n\n"
                "*Examples:*\n"
                "• !addreminder 2h Call mom\n"
                "• !addreminder tomorrow 9am Meeting\n"
                "• !addreminder daily 8pm Take medicine"
            )
            return

        try:
            reminder = await self._create_reminder(jid, sender, request)
            if reminder is None:
                await self.reply(
                    jid,
                    "❌ Could not understand the time format.\n\n"
                    "*Valid formats:*\n"
                    "• \"in 2 hours\"\n"
                    "• \"tomorrow 9am\"\n"
                    "• \"daily at 8pm\"\n"
                    "• \"10:30pm\""
                )
                return

            due_at = crud.as_utc(reminder.due_at)
            await self.reply(
                jid,
                "✅ *Reminder Set!*\n\n"
                f"• Message: {reminder.text}\n"
                f"• Time: {format_datetime_full(due_at)}\n"
                f"• ID: {reminder.id[:8]}\n"
                f"• Status: {reminder.status.value}\n\n"
                f"_I'll remind you {format_relative(due_at, self.now())}_"
            )
            logger.info(f"Reminder created for {push_name}: {reminder.id}")
        except Exception as e:
            logger.error(f"Error creating reminder: {e}")
            await self.reply(jid, f"❌ Failed to create reminder: {e}")

    async def handle_my_reminders(self, jid: str, sender: str) -> None:
        try:
            pending = await self._in_session(crud.get_user_reminders, sender, 'pending')

            if not pending:
                await self.reply(
                    jid,
                    "📭 You have no pending reminders.\n\n"
                    "Create one with:\n"
                    "• !addreminder <time> <message>\n"
                    "• Or natural language: \"remind me in 2 hours\""
                )
                return

            now = self.now()
            text = f"📋 *Your Pending Reminders ({len(pending)})*\n\n"
            for index, reminder in enumerate(pending, start=1):
                due_at = crud.as_utc(reminder.due_at)
                text += (
                    f"*{index}. {reminder.text}*\n"
                    f"   ⏰ {format_datetime_med(due_at)}\n"
                    f"   🆔 {reminder.id[:8]}\n"
                    f"   ⏳ {format_relative(due_at, now)}\n\n"
                )
            text += "_Use !cancelreminder <ID> to cancel a reminder_"
            await self.reply(jid, text)
        except Exception as e:
            logger.error(f"Error getting reminders: {e}")
            await self.reply(jid, f"❌ Failed to get your reminders: {e}")

    async def handle_cancel_reminder(self, jid: str, sender: str, text: str) -> None:
        reminder_id = _argument(text)
        if not reminder_id:
            await self.reply(
                jid,
                "📝 *Usage:* !cancelreminder <reminder_id>\n\n"
                "Get reminder IDs from !myreminders command"
            )
            return

        try:
            deleted = await self._in_session(crud.delete_reminder, reminder_id, sender)

            if deleted:
                await self.reply(
                    jid,
                    "✅ Reminder cancelled successfully.\n\n"
                    f"ID: {reminder_id[:8]}\n"
                    "_Reminder has been removed._"
                )
            else:
                await self.reply(
                    jid,
                    f"❌ Could not find reminder with ID: {reminder_id}\n\n"
                    "Make sure:\n"
                    "1. The ID is correct\n"
                    "2. The reminder belongs to you\n"
                    "3. The reminder hasn't already been sent/cancelled"
                )
        except Exception as e:
            logger.error(f"Error cancelling reminder: {e}")
            await self.reply(jid, f"❌ Failed to cancel reminder: {e}")

    async def handle_natural_reminder(
        self, jid: str, sender: str, text: str, push_name: str
    ) -> None:
        try:
            reminder = await self._create_reminder(jid, sender, text)
            if reminder is None:
                await self.reply(
                    jid,
                    "🤔 I couldn't understand the time in your reminder.\n\n"
                    "*Try these formats:*\n"
                    "• \"remind me in 2 hours to call mom\"\n"
                    "• \"remind me tomorrow 9am meeting\"\n"
                    "• \"remind me daily at 8pm drink water\"\n\n"
                    "Or use: !addreminder <time> <message>"
                )
                return

            due_at = crud.as_utc(reminder.due_at)
            await self.reply(
                jid,
                "✅ *Reminder Set!*\n\n"
                f"• Message: {reminder.text}\n"
                f"• Time: {format_datetime_full(due_at)}\n"
                f"• ID: {reminder.id[:8]}\n\n"
                f"_I'll remind you {format_relative(due_at, self.now())}_"
            )
            logger.info(f"Natural reminder created for {push_name}: {reminder.id}")
        except Exception as e:
            logger.error(f"Error creating natural reminder: {e}")
            await self.reply(
                jid,
                f"❌ Failed to create reminder: {e}\n\n"
                "Try using: !addreminder <time> <message>"
            )

    # -- group events -------------------------------------------------------

    async def handle_group_participants_update(
        self, group_jid: str, participants: list, action: str, bot_jid: Optional[str]
    ) -> None:
        logger.info(f"👥 Group {group_jid}: {action} {', '.join(participants)}")
        if action != 'add' or not bot_jid or bot_jid not in participants:
            return

        await self.reply(
            group_jid,
            f"🤖 *{settings.BOT_NAME} Bot has joined the group!*\n\n"
            "I'm a reminder bot that can help you set reminders.\n\n"
            "*How to use:*\n"
            "• Mention me with \"remind me in 2 hours to call mom\"\n"
            "• Or use commands: !help for all commands"
        )
