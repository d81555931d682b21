"""Settings via pydantic-settings with VIGIL_ env prefix.

Credentials use validation_alias to read the same unprefixed env vars
(TELEGRAM_BOT_TOKEN, ANTHROPIC_API_KEY) the agent SDK and deployment
scripts already export, so a single .env file drives everything.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vigil.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VIGIL_",
        env_file=".env",
        populate_by_name=True,
        extra="ignore",
    )

    # Credentials: unprefixed aliases
    telegram_bot_token: str = Field("", validation_alias="TELEGRAM_BOT_TOKEN")
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    telegram_api_base: str = "https://api.telegram.org"

    # Access control: comma-separated chat ids. The first one receives alerts
    # unless alert_chat is set.
    allowed_chats: str = ""
    alert_chat: str = ""

    # Identity
    assistant_name: str = "JARVIS"
    log_level: str = "info"

    # Files
    state_dir: str = "."
    database_file: str = "vigil.db"
    checklist_file: str = "HEARTBEAT.md"
    alerts_file: str = "ALERTS.txt"

    # Agent
    agent_workdir: str = "/agent"
    agent_model: str = ""
    # Comma-separated tool names; empty keeps the built-in sets
    chat_tools: str = ""
    system_tools: str = ""

    # History
    history_limit: int = 100

    # Timers (seconds)
    heartbeat_interval: int = 300
    heartbeat_initial_delay: int = 10
    alert_check_interval: int = 30
    progress_interval: float = 5.0

    # Cron
    timezone: str = ""  # IANA name; empty = system local time
    retire_orphaned_jobs: bool = True

    @field_validator("history_limit", "heartbeat_interval", "alert_check_interval")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @property
    def allowed_conversations(self) -> frozenset[str]:
        return frozenset(c.strip() for c in self.allowed_chats.split(",") if c.strip())

    @property
    def alert_recipient(self) -> str | None:
        if self.alert_chat.strip():
            return self.alert_chat.strip()
        for chat in self.allowed_chats.split(","):
            if chat.strip():
                return chat.strip()
        return None

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser().resolve()

    @property
    def database_path(self) -> Path:
        return self.state_path / self.database_file

    @property
    def checklist_path(self) -> Path:
        return self.state_path / self.checklist_file

    @property
    def alerts_path(self) -> Path:
        return self.state_path / self.alerts_file

    @property
    def db_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.database_path}"

    def validate_required(self) -> None:
        """Raise ConfigurationError if a credential or identity is missing."""
        missing: list[str] = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.anthropic_api_key:
            missing.append("ANTHROPIC_API_KEY")
        if not self.allowed_conversations:
            missing.append("VIGIL_ALLOWED_CHATS")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
