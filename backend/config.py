from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Homeschool Goals"
    DATABASE_URL: str = "sqlite:///data/homeschool.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:8050",
        "https://localhost:8050",
    ]
    LOG_LEVEL: str = "INFO"
    DEFAULT_TIMEZONE: str = "America/New_York"
    DEFAULT_WEEK_START_DAY: int = 1  # 0 = Sunday
    ALLOW_MULTIPLE_RECORDS_PER_DAY: bool = True
    DEFAULT_CYCLE_SECONDS: int = 10
    PUBLIC_DASHBOARD_ID_LENGTH: int = 8

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_configuration(self) -> None:
        errors: list[str] = []
        try:
            ZoneInfo((self.DEFAULT_TIMEZONE or "").strip())
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"DEFAULT_TIMEZONE {self.DEFAULT_TIMEZONE!r} is not a known IANA timezone")
        if not 0 <= int(self.DEFAULT_WEEK_START_DAY) <= 6:
            errors.append("DEFAULT_WEEK_START_DAY must be between 0 (Sunday) and 6 (Saturday)")
        if self.DEFAULT_CYCLE_SECONDS < 1:
            errors.append("DEFAULT_CYCLE_SECONDS must be positive")
        if self.PUBLIC_DASHBOARD_ID_LENGTH < 6:
            errors.append("PUBLIC_DASHBOARD_ID_LENGTH must be at least 6")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
