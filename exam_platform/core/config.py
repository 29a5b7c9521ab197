from pydantic_settings import BaseSettings
from typing import Optional, List

class Settings(BaseSettings):
    PROJECT_NAME: str = "Exam Platform"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database Configuration
    DATABASE_HOST: str = "localhost"
    DATABASE_PORT: str = "5432"
    DATABASE_USER: str = "postgres"
    DATABASE_PASSWORD: str = ""
    DATABASE_NAME: str = "exam_platform"

    DATABASE_URL: str = ""
    TEST_DATABASE_URL: Optional[str] = None

    def __init__(self, **data):
        super().__init__(**data)
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f'postgresql://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}'
                f'@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}'
            )

    # Score queue; memory backend when REDIS_URL is unset
    REDIS_URL: Optional[str] = None
    SCORE_QUEUE_NAME: str = "score-calculation"
    SCORE_WORKER_CONCURRENCY: int = 3
    SCORE_JOB_MAX_ATTEMPTS: int = 3
    SCORE_JOB_BACKOFF_SECONDS: float = 1.0
    SCORE_JOB_VISIBILITY_TIMEOUT_SECONDS: float = 300.0
    SCORE_RECONCILE_AFTER_SECONDS: int = 300

    # Attempts
    AUTO_SUBMIT_INTERVAL_SECONDS: int = 60
    ATTEMPT_LOCK_TIMEOUT_MS: int = 5000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    class Config:
        env_file = ".env"

settings = Settings()
