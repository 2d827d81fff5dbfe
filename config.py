"""Configuration module for Remo Bot.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

import os
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for Remo Bot.

    All settings can be overridden via environment variables.
    Example: export BRIDGE_URL="ws://10.0.0.5:3001"
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Bot Identity
    BOT_NAME: str = "Remo"
    """Display name used in every reply"""

    BOT_VERSION: str = "1.0.0"

    CREATOR_NAME: str = "Chitron Bhattacharjee"

    CREATOR_JID: str = "8801316655254@s.whatsapp.net"
    """Fixed creator identity. The creator is always an admin."""

    TIMEZONE: str = "Asia/Dhaka"
    """Timezone for parsing and displaying reminder times"""

    # Storage Configuration
    DATA_DIR: str = "./data"

    ADMINS_FILE: str = ""
    """Admin list JSON file. Default: <DATA_DIR>/admins.json"""

    DATABASE_URL: str = "sqlite:///./data/reminders.db"
    """Reminder database URL"""

    # Bridge Configuration
    BRIDGE_URL: str = "ws://127.0.0.1:3001"
    """WebSocket URL of the WhatsApp device-session bridge"""

    BRIDGE_TOKEN: str = ""

    BRIDGE_SEND_TIMEOUT: float = 20.0
    """Seconds to wait for the bridge to acknowledge a send"""

    MAX_RETRIES: int = 5
    """Reconnect attempts before giving up"""

    RECONNECT_BASE_MS: int = 1000

    RECONNECT_MAX_MS: int = 30000

    BROADCAST_DELAY_SECONDS: float = 1.0
    """Pause between broadcast recipients to avoid rate limiting"""

    # Status API Configuration
    API_ENABLED: bool = True

    API_HOST: str = "0.0.0.0"

    API_PORT: int = 8005

    # MCP Server Configuration
    MCP_HOST: str = "127.0.0.1"

    MCP_PORT: int = 8006

    MCP_TRANSPORT: str = "sse"
    """MCP transport type: 'stdio' for local, 'sse' for network access"""

    # General Configuration
    SERVER_URL: str = Field(
        default="",
        validation_alias=AliasChoices("SERVER_URL", "RENDER_EXTERNAL_URL"),
    )
    """Public URL shown in the startup message"""

    LOG_LEVEL: str = "INFO"

    LOG_DIR: str = "./logs"

    LOG_TO_FILE: bool = True
    """Set to false to log to the console only (containers, tests)"""

    @property
    def admins_path(self) -> str:
        if self.ADMINS_FILE:
            return self.ADMINS_FILE
        return os.path.join(self.DATA_DIR, "admins.json")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)


# Global settings instance
settings = Settings()
