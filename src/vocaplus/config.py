import os
from typing import Dict


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    PROJECT_NAME: str = "vocaplus"
    DEBUG: bool = _env_flag("VOCAPLUS_DEBUG")
    LOG_DIR: str = os.environ.get("VOCAPLUS_LOG_DIR", "log")
    LOG_FILE: str = "vocaplus.log"
    LOG_TO_DB: bool = _env_flag("VOCAPLUS_LOG_TO_DB")
    DB_DIR: str = os.environ.get("VOCAPLUS_DB_DIR", "db")
    DB_FILE: str = "vocaplus.db"
    VOCAB_DIR: str = os.environ.get("VOCAPLUS_VOCAB_DIR", "data")
    BOOK_FILES: Dict[str, str] = {
        "etymology": "root.csv",
        "basic": "DB-basic.csv",
        "advanced": "DB-advanced.csv",
    }
    HISTORY_LIMIT: int = 10
    MAX_QUESTION_COUNT: int = 200
    CHOICE_COUNT: int = 10
    DAY_SIZE: int = 50
    MAX_DAYS: int = 30
    MAX_DERIVATIVES: int = 6
    DEFAULT_TIME_LIMIT_MINUTES: float = 20
    TIMER_INTERVAL_SECONDS: float = 0.5
    ROOT_PATH: str = os.environ.get("ROOT_PATH", "")


settings = Settings()
