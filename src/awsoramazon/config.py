import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "aws-or-amazon")
    DEBUG: bool = _env_bool("DEBUG", False)
    LOG_DIR: str = os.getenv("LOG_DIR", "log")
    LOG_FILE: str = os.getenv("LOG_FILE", "aws-or-amazon.log")
    LOG_TO_FILE: bool = _env_bool("LOG_TO_FILE", False)
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "redis")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    TABLE_NAME: str = os.getenv("TABLE_NAME", "questions")
    STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))
    QUESTION_BANK_LIMIT: int = int(os.getenv("QUESTION_BANK_LIMIT", "200"))
    DEFAULT_QUIZ_SIZE: int = 10
    MAX_QUIZ_SIZE: int = 20
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 50
    DELETE_TTL_SECONDS: int = 60 * 60 * 24
    IDEMPOTENCY_TTL_SECONDS: int = 60 * 60 * 6
    SEED_DIR: str = os.getenv("SEED_DIR", "seed")
    SEED_ON_STARTUP: bool = _env_bool("SEED_ON_STARTUP", False)


settings = Settings()
