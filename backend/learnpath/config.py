import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

DATA_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseSettings):
    user_id: str = Field("local-learner", alias="LEARNPATH_USER_ID")
    database_url: Optional[str] = Field(None, alias="LEARNPATH_DATABASE_URL")
    database_pool_size: int = Field(10, alias="LEARNPATH_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="LEARNPATH_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LEARNPATH_DATABASE_ECHO")
    remote_mode: Literal["database", "http", "offline"] = Field("http", alias="LEARNPATH_REMOTE_MODE")
    remote_base_url: str = Field("http://127.0.0.1:8000", alias="LEARNPATH_REMOTE_BASE_URL")
    remote_timeout_seconds: float = Field(5.0, alias="LEARNPATH_REMOTE_TIMEOUT_SECONDS")
    local_cache_path: Path = Field(DATA_DIR / "local_progress.json", alias="LEARNPATH_LOCAL_CACHE_PATH")
    outbound_queue_path: Path = Field(DATA_DIR / "outbound_queue.json", alias="LEARNPATH_OUTBOUND_QUEUE_PATH")
    hydrate_local_cache: bool = Field(True, alias="LEARNPATH_HYDRATE_LOCAL_CACHE")
    unit_availability_policy: Literal["sequential", "all_unlocked"] = Field(
        "all_unlocked",
        alias="LEARNPATH_UNIT_AVAILABILITY_POLICY",
    )
    passing_score: float = Field(70.0, alias="LEARNPATH_PASSING_SCORE")
    module_share: int = Field(50, alias="LEARNPATH_MODULE_SHARE")
    total_weeks: int = Field(10, alias="LEARNPATH_TOTAL_WEEKS")
    modules_per_week: int = Field(4, alias="LEARNPATH_MODULES_PER_WEEK")
    writing_prompts_per_week: int = Field(0, alias="LEARNPATH_WRITING_PROMPTS_PER_WEEK")
    sync_max_attempts: int = Field(3, alias="LEARNPATH_SYNC_MAX_ATTEMPTS")
    sync_retry_base_seconds: float = Field(1.0, alias="LEARNPATH_SYNC_RETRY_BASE_SECONDS")
    reconnect_delay_seconds: float = Field(2.0, alias="LEARNPATH_RECONNECT_DELAY_SECONDS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid learnpath configuration: {exc}") from exc
