import json
import logging

import admin
import crud
from conftest import ADMIN_A, ADMIN_B, CREATOR, USER, FakeMessenger, run
from dispatcher import CommandDispatcher, IncomingMessage

GROUP = "120363041234567890@g.us"


def send(dispatcher, text, sender=USER, jid=None, is_group=False):
    message = IncomingMessage(
        jid=jid or sender,
        sender=sender,
        text=text,
        push_name="Tester",
        is_group=is_group,
    )
    run(dispatcher.handle(message))


def set_admins(path, admins):
    with open(path, "w", encoding="utf-8") as fh:
        json.dump({"admins": admins}, fh)


def test_ping_accepts_both_prefixes(dispatcher, messenger):
    send(dispatcher, "!ping")
    send(dispatcher, "/PING")
    assert messenger.to(USER) == ["🏓 Pong!", "🏓 Pong!"]


def test_help_for_regular_user(dispatcher, messenger):
    send(dispatcher, "!help")
    assert "Available Commands" in messenger.last
    assert "Admin Commands" not in messenger.last
    assert "In groups" not in messenger.last


def test_help_for_creator_in_group(dispatcher, messenger):
    send(dispatcher, "!start", sender=CREATOR, jid=GROUP, is_group=True)
    reply = messenger.to(GROUP)[0]
    assert "Admin Commands" in reply
    assert "In groups" in reply


def test_info_and_time(dispatcher, messenger):
    send(dispatcher, "!info")
    assert "Remo Bot Information" in messenger.last
    assert "Connected ✅" in messenger.last
    assert "Version: 1.0.0" in messenger.last

    send(dispatcher, "/time")
    assert "Date: October 19, 2026" in messenger.last
    assert "Day: Monday" in messenger.last
    assert "Time: 10:00:00 AM" in messenger.last


def test_unknown_command_and_plain_chat(dispatcher, messenger):
    send(dispatcher, "!dance")
    assert messenger.last.startswith("❓ Unknown command.")

    send(dispatcher, "hello there")
    assert len(messenger.sent) == 1


def test_admins_requires_admin(dispatcher, messenger, admins_file):
    send(dispatcher, "!admins")
    assert messenger.last == "⛔ This command is only available to administrators."

    send(dispatcher, "!admins", sender=CREATOR)
    assert "None (only creator)" in messenger.last

    set_admins(admins_file, [ADMIN_A])
    send(dispatcher, "!admins", sender=ADMIN_A)
    assert "1. 8801711111111" in messenger.last
    assert "Total admins: 1" in messenger.last


def test_promote_permission_chain(dispatcher, messenger, admins_file):
    send(dispatcher, "!promote 8801722222222")
    assert messenger.last == "⛔ Admin commands are restricted to administrators only."

    set_admins(admins_file, [ADMIN_A])
    send(dispatcher, "!promote 8801722222222", sender=ADMIN_A)
    assert messenger.last == "⛔ Only the creator can promote/demote administrators."


def test_promote_validates_number(dispatcher, messenger):
    send(dispatcher, "!promote", sender=CREATOR)
    assert messenger.last.startswith("📝 *Usage:* !promote")

    send(dispatcher, "!promote 12345", sender=CREATOR)
    assert "*You entered:* 12345" in messenger.last

    send(dispatcher, "!promote abc", sender=CREATOR)
    assert "*You entered:* empty" in messenger.last


def test_promote_success_notifies_target(dispatcher, messenger):
    send(dispatcher, "!promote +8801722222222", sender=CREATOR)

    assert messenger.to(CREATOR) == ["User promoted to admin successfully"]
    assert "promoted to Administrator" in messenger.to(ADMIN_B)[0]
    assert admin.is_admin(ADMIN_B)


def test_promote_notification_failure_is_not_fatal(session_factory):
    messenger = FakeMessenger(fail_for={ADMIN_B})
    dispatcher = CommandDispatcher(messenger, session_factory=session_factory, broadcast_delay=0)

    send(dispatcher, "!promote 8801722222222", sender=CREATOR)
    assert messenger.to(CREATOR) == ["User promoted to admin successfully"]
    assert admin.is_admin(ADMIN_B)


def test_demote(dispatcher, messenger, admins_file):
    set_admins(admins_file, [ADMIN_B])

    send(dispatcher, "!demote 8801722222222", sender=CREATOR)
    assert messenger.to(CREATOR) == ["User demoted from admin successfully"]
    assert "privileges have been removed" in messenger.to(ADMIN_B)[0]

    send(dispatcher, "!demote 8801722222222", sender=CREATOR)
    assert messenger.last == "User is not an admin"

    send(dispatcher, "!demote 0171", sender=CREATOR)
    assert messenger.last == "❌ Invalid Bangladeshi phone number format."


def test_broadcast_from_creator(dispatcher, messenger, admins_file):
    set_admins(admins_file, [ADMIN_A, ADMIN_B])
    send(dispatcher, "!broadcast Maintenance at 10PM", sender=CREATOR, jid=GROUP)

    assert "Maintenance at 10PM" in messenger.to(CREATOR)[0]
    assert len(messenger.to(ADMIN_A)) == 1
    assert len(messenger.to(ADMIN_B)) == 1
    assert messenger.to(GROUP) == ["✅ Broadcast sent to 3 recipients."]


def test_broadcast_skips_sender_and_counts_failures(session_factory, admins_file):
    set_admins(admins_file, [ADMIN_A, ADMIN_B])
    messenger = FakeMessenger(fail_for={ADMIN_B})
    dispatcher = CommandDispatcher(messenger, session_factory=session_factory, broadcast_delay=0)

    send(dispatcher, "/broadcast hi", sender=ADMIN_A, jid=GROUP)
    assert messenger.to(ADMIN_A) == []
    assert len(messenger.to(CREATOR)) == 1
    assert messenger.to(GROUP) == ["✅ Broadcast sent to 1 recipients."]


def test_broadcast_usage_and_permission(dispatcher, messenger):
    send(dispatcher, "!broadcast hello")
    assert messenger.last == "⛔ Admin commands are restricted."

    send(dispatcher, "!broadcast", sender=CREATOR)
    assert messenger.last.startswith("📝 *Usage:* !broadcast")


def test_add_reminder(dispatcher, messenger, session_factory):
    send(dispatcher, "!addreminder in 2 hours call mom")

    reply = messenger.last
    assert reply.startswith("✅ *Reminder Set!*")
    assert "• Message: call mom" in reply
    assert "• Time: October 19, 2026 at 12:00 PM GMT+6" in reply
    assert "• Status: pending" in reply
    assert "_I'll remind you in 2 hours_" in reply

    db = session_factory()
    try:
        reminders = crud.get_user_reminders(db, USER)
    finally:
        db.close()
    assert len(reminders) == 1
    assert f"• ID: {reminders[0].id[:8]}" in reply


def test_add_reminder_usage_and_bad_time(dispatcher, messenger):
    send(dispatcher, "!addreminder")
    assert messenger.last.startswith("📝 *Usage:* !addreminder")

    send(dispatcher, "!addreminder at 99 nothing")
    assert messenger.last.startswith("❌ Could not understand the time format.")


def test_natural_reminder(dispatcher, messenger):
    send(dispatcher, "Remind me tomorrow 9am drink water")

    reply = messenger.last
    assert "• Message: drink water" in reply
    assert "October 20, 2026 at 9:00 AM GMT+6" in reply
    assert "_I'll remind you in 23 hours_" in reply
    assert "Status" not in reply


def test_natural_reminder_bad_time(dispatcher, messenger):
    send(dispatcher, "set an alarm at 99")
    assert messenger.last.startswith("🤔 I couldn't understand the time")

    send(dispatcher, "remind me in 99999999 hours x")
    assert messenger.last.startswith("🤔 I couldn't understand the time")

    send(dispatcher, "!addreminder in 99999999 hours x")
    assert messenger.last.startswith("❌ Could not understand the time format.")


def test_my_reminders(dispatcher, messenger):
    send(dispatcher, "!myreminders")
    assert messenger.last.startswith("📭 You have no pending reminders.")

    send(dispatcher, "remind me tomorrow 9am second")
    send(dispatcher, "remind me in 30 minutes first")
    send(dispatcher, "!myreminders")

    listing = messenger.last
    assert listing.startswith("📋 *Your Pending Reminders (2)*")
    assert listing.index("*1. first*") < listing.index("*2. second*")
    assert "⏰ Oct 19, 2026, 10:30 AM" in listing
    assert "⏳ in 30 minutes" in listing


def test_cancel_reminder_by_short_id(dispatcher, messenger, session_factory):
    send(dispatcher, "remind me in 2 hours stretch")
    db = session_factory()
    try:
        short_id = crud.get_user_reminders(db, USER)[0].id[:8]
    finally:
        db.close()

    send(dispatcher, f"!cancelreminder {short_id}", sender=ADMIN_A)
    assert messenger.last.startswith("❌ Could not find reminder")

    send(dispatcher, f"!cancelreminder {short_id}")
    assert messenger.last.startswith("✅ Reminder cancelled successfully.")
    assert f"ID: {short_id}" in messenger.last

    send(dispatcher, f"!cancelreminder {short_id}")
    assert messenger.last.startswith("❌ Could not find reminder")


def test_cancel_reminder_usage(dispatcher, messenger):
    send(dispatcher, "/cancelreminder")
    assert messenger.last.startswith("📝 *Usage:* !cancelreminder")


def test_reminder_store_failure_is_reported(messenger):
    def broken_session():
        raise RuntimeError("database is locked")

    dispatcher = CommandDispatcher(messenger, session_factory=broken_session)
    send(dispatcher, "!myreminders")
    assert messenger.last == "❌ Failed to get your reminders: database is locked"


def test_unexpected_error_is_reported_to_chat(dispatcher, messenger, monkeypatch):
    def broken(jid):
        raise RuntimeError("disk gone")

    monkeypatch.setattr(admin, "is_admin", broken)
    send(dispatcher, "!ping")
    assert messenger.last.startswith("⚠️ An error occurred while processing your command.")
    assert "Error: disk gone" in messenger.last


def test_group_welcome_only_when_bot_added(dispatcher, messenger):
    bot = "8801999999999@s.whatsapp.net"
    run(dispatcher.handle_group_participants_update(GROUP, [USER], "add", bot))
    assert messenger.sent == []

    run(dispatcher.handle_group_participants_update(GROUP, [bot], "remove", bot))
    assert messenger.sent == []

    run(dispatcher.handle_group_participants_update(GROUP, [USER, bot], "add", bot))
    assert "has joined the group" in messenger.to(GROUP)[0]


def test_reminder_creation_is_logged(dispatcher, caplog):
    with caplog.at_level(logging.INFO, logger="dispatcher"):
        send(dispatcher, "remind me in 2 hours stretch")
    assert any("Natural reminder created for Tester" in r.getMessage() for r in caplog.records)
