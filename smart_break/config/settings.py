from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation"""

    # Service Configuration
    TICK_INTERVAL_SECONDS: float = 1.0
    AUTO_RESTART: bool = True
    MAX_ERRORS: int = 3

    # Path Configuration
    BASE_DIR: Path = Path(__file__).parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOG_DIR: Path = BASE_DIR / "logs"
    DEFAULT_DB_PATH: Path = DATA_DIR / "smart_break.db"

    # Web Configuration
    WEB_PORT: int = 8000
    WEB_HOST: str = "localhost"

    # Development Configuration
    DEBUG: bool = False
    WEB_RUN_SERVICE: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SMART_BREAK_",
        case_sensitive=True,
        extra="ignore"
    )

    def validate_paths(self) -> None:
        """Ensure all required paths exist"""
        for path in [self.DATA_DIR, self.LOG_DIR]:
            path.mkdir(parents=True, exist_ok=True)


settings = Settings()
