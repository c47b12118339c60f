import os
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Application Settings
    APP_NAME: str = "Dispatch Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"

    # Database Settings
    # A full SQLAlchemy URL wins over the discrete MySQL settings below
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "3306"))
    DB_USER: str = os.getenv("DB_USER", "dispatch")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    DB_NAME: str = os.getenv("DB_NAME", "dispatch")

    # JWT Settings (actor tokens are issued by the identity service)
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dispatch-ledger-dev-secret")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS Settings
    CORS_ORIGINS: List[str] = ["*"]

    # Redis (optional, cross-process settlement locks)
    REDIS_URL: str = os.getenv("REDIS_URL", "")
    SETTLEMENT_LOCK_TIMEOUT: int = 30  # seconds a held lock survives a crashed worker
    SETTLEMENT_LOCK_WAIT: int = 10     # seconds to wait for a busy driver

    # Ledger
    STORE_CONFLICT_RETRIES: int = 3
    SETTLEMENT_BACKDATE_CUTOFF_HOUR: int = 6
    DEFAULT_COMMISSION_TYPE: str = "percentage"
    DEFAULT_COMMISSION_RATE: float = 25.0

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def REDIS_ENABLED(self) -> bool:
        return bool(self.REDIS_URL)

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
