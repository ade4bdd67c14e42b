from pathlib import Path
from typing import Literal, Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import RedisDsn


DEFAULT_VOCABULARY_FILE = Path(__file__).resolve().parent.parent / "data" / "vocabulary.json"


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    key_prefix: str = Field(default="battle:", alias="REDIS_KEY_PREFIX")

    @computed_field
    def dsn(self) -> RedisDsn:
        if self.password:
            return RedisDsn(
                f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
            )
        else:
            return RedisDsn(f"redis://{self.host}:{self.port}/{self.db}")


class BattleSettings(BaseSettings):
    """Timing, sizing and transport knobs for the battle engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BATTLE_",
        extra="ignore",
    )

    # Countdown
    question_seconds: int = 10
    tick_seconds: float = 1.0
    answer_settle_seconds: float = 1.5
    timeout_settle_seconds: float = 1.0
    guest_finish_grace_seconds: float = 5.0

    # Question counts per mode
    head_to_head_questions: int = 10
    daily_questions: int = 5

    # Rooms
    room_code_length: int = 6
    room_code_attempts: int = 5
    room_idle_seconds: int = 600
    sweep_interval_seconds: int = 60

    # Writes
    write_retries: int = 3
    write_backoff_seconds: float = 0.2

    store_backend: Literal["memory", "redis"] = "memory"
    vocabulary_file: Path = DEFAULT_VOCABULARY_FILE


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="vocab-battle", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    redis: RedisSettings = Field(default_factory=lambda: RedisSettings())
    battle: BattleSettings = Field(default_factory=lambda: BattleSettings())


settings = Settings()
