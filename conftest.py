"""Shared fixtures: isolated admin file, in-memory reminder DB, fake messenger."""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import database
from config import settings
from dispatcher import CommandDispatcher

DHAKA = ZoneInfo("Asia/Dhaka")
# A Monday morning
FIXED_NOW = datetime(2026, 10, 19, 10, 0, tzinfo=DHAKA)

CREATOR = "8801316655254@s.whatsapp.net"
ADMIN_A = "8801711111111@s.whatsapp.net"
ADMIN_B = "8801722222222@s.whatsapp.net"
USER = "8801733333333@s.whatsapp.net"


def run(coro):
    return asyncio.run(coro)


class FakeMessenger:
    """Records outgoing messages; raises for JIDs listed in fail_for."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send_text(self, jid, text):
        if jid in self.fail_for:
            raise RuntimeError(f"cannot reach {jid}")
        self.sent.append((jid, text))

    def to(self, jid):
        return [text for target, text in self.sent if target == jid]

    @property
    def last(self):
        return self.sent[-1][1] if self.sent else None


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "ADMINS_FILE", str(tmp_path / "admins.json"))
    monkeypatch.setattr(settings, "CREATOR_JID", CREATOR)
    monkeypatch.setattr(settings, "TIMEZONE", "Asia/Dhaka")
    monkeypatch.setattr(settings, "BOT_NAME", "Remo")
    return settings


@pytest.fixture
def admins_file(isolated_settings):
    return isolated_settings.admins_path


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def dispatcher(messenger, session_factory):
    return CommandDispatcher(
        messenger,
        is_connected=lambda: True,
        session_factory=session_factory,
        now=lambda: FIXED_NOW,
        broadcast_delay=0,
    )
