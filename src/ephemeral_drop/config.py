"""Configuration settings for ephemeral-drop."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from ephemeral_drop.admission import parse_duration


class Settings(BaseSettings):
    """Application settings loaded from environment variables (prefix ``DROP_``)."""

    model_config = SettingsConfigDict(
        env_prefix="DROP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    public_url: str = "http://localhost:3000"  # Base for printed share links
    log_level: str = "INFO"

    # Storage
    data_dir: Path = Path("./data")
    database_url: str | None = None  # Defaults to SQLite inside data_dir
    database_echo: bool = False

    # ── Admission ────────────────────────────────────────────────────────────
    max_file_size: int = 524_288_000  # 500MB
    max_ttl: str = "30d"

    # ── Rate limiting (per client address) ───────────────────────────────────
    rate_limit_window_s: int = 3600
    rate_limit_max: int = 20

    # Expired-object sweep cadence, independent of the rate-limit window
    reaper_interval_s: int = 300

    @property
    def files_dir(self) -> Path:
        return self.data_dir / "files"

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir / 'drop.db'}"

    @property
    def max_ttl_seconds(self) -> int:
        """Ceiling on upload TTLs; raises ValidationError if ``max_ttl`` is malformed."""
        return parse_duration(self.max_ttl)


settings = Settings()
