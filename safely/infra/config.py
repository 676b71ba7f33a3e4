# safely/infra/config.py
from __future__ import annotations
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
from pathlib import Path


class DBSettings(BaseModel):
    driver: str = "mysql+pymysql"
    host: str | None = None
    port: int | None = 3306
    user: str | None = None
    password: str | None = None
    database: str
    charset: str | None = "utf8mb4"
    isolation_level: str | None = "READ COMMITTED"
    lock_timeout: int | None = None  # seconds, MySQL innodb_lock_wait_timeout


class LoggingSettings(BaseModel):
    level: str = "INFO"
    console: bool = False
    logs_dir: Path | None = None
    log_sql: bool = False


class RetrySettings(BaseModel):
    max_tries: int = Field(default=1, ge=1)
    base_sleep: float = Field(default=0.1, ge=0)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SAFELY_", env_nested_delimiter="__")
    app_name: str = "safely"
    db: DBSettings
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


def load_settings(config_path: Path) -> AppSettings:
    data = json.loads(Path(config_path).read_text(encoding="utf-8"))
    return AppSettings(**data)


def load_app_config(base_dir: Path) -> AppSettings:
    """Load configuration from ``config/app.json``.

    Args:
        base_dir: Root directory of the application.

    Raises:
        FileNotFoundError: If the configuration file does not exist.

    Returns:
        Parsed :class:`AppSettings` instance.
    """
    config_path = Path(base_dir) / "config" / "app.json"
    if not config_path.exists():
        raise FileNotFoundError(f"Missing configuration file: {config_path}")
    return load_settings(config_path)
