from pydantic_settings import BaseSettings, SettingsConfigDict


def _split(value: str, sep: str) -> list[str]:
    return [part.strip() for part in value.split(sep) if part.strip()]


class Settings(BaseSettings):
    app_name: str = "NotifyQ"
    environment: str = "dev"

    database_url: str = "sqlite:///./notifyq.db"

    log_level: str = "INFO"
    log_json: bool = True

    # Calendar days (dedup, lookahead) and cron triggers use this zone
    timezone: str = "Asia/Kolkata"

    # Scheduler
    scheduler_enabled: bool = True
    run_cycle_on_startup: bool = True
    cycle_crons: str = "0 8 * * *;0 15 * * *;0 19 * * *"  # ";"-separated
    cleanup_cron: str = "0 2 * * 0"

    # Producer / worker
    lookahead_days: int = 14
    candidate_limit: int = 20
    default_max_attempts: int = 3
    batch_size: int = 25
    stuck_after_minutes: int = 30
    retry_backoff_seconds: int = 0
    delivery_timeout_seconds: float = 10.0

    # Cleanup / admin
    retention_days: int = 30
    stats_window_days: int = 7

    # Transport: "log", "email" or "telegram"
    transport: str = "log"
    admin_emails: str = ""  # comma-separated

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_starttls: bool = True
    smtp_from: str = "noreply@localhost"
    smtp_from_name: str = "Rental Management System"

    telegram_bot_token: str | None = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_chat_ids: str = ""  # comma-separated, merged with registered chats

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def cycle_cron_list(self) -> list[str]:
        return _split(self.cycle_crons, ";")

    @property
    def admin_email_list(self) -> list[str]:
        return _split(self.admin_emails, ",")

    @property
    def telegram_chat_id_list(self) -> list[str]:
        return _split(self.telegram_chat_ids, ",")


settings = Settings()
