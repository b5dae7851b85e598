from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List
from dotenv import load_dotenv
import os

load_dotenv()


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"

    # Persistence: "supabase" in deployed environments, "memory" for local runs and tests
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory")
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")

    # Redis (pub/sub fan-out, settlement locks, Celery broker)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

    @property
    def redis_connection_url(self) -> str:
        return self.REDIS_URL

    # CORS
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "*")

    @property
    def allowed_origins_list(self) -> List[str]:
        return self.ALLOWED_ORIGINS.split(",")

    # Challenge rules
    # Amounts are in the smallest currency unit
    MIN_ENTRY_FEE: int = int(os.getenv("MIN_ENTRY_FEE", 1))
    MAX_ENTRY_FEE: int = int(os.getenv("MAX_ENTRY_FEE", 100000))
    MIN_PERCENTAGE_GOAL: Decimal = Decimal(os.getenv("MIN_PERCENTAGE_GOAL", "1"))
    MAX_PERCENTAGE_GOAL: Decimal = Decimal(os.getenv("MAX_PERCENTAGE_GOAL", "10"))

    # Settlement
    PLATFORM_FEE_RATE: Decimal = Decimal(os.getenv("PLATFORM_FEE_RATE", "0.35"))
    SETTLEMENT_LOCK_TTL_SECONDS: int = int(
        os.getenv("SETTLEMENT_LOCK_TTL_SECONDS", 120)
    )

    # Progress
    WEEKLY_TREND_DAYS: int = int(os.getenv("WEEKLY_TREND_DAYS", 7))

    # Realtime fan-out
    REALTIME_CHANNEL_PREFIX: str = os.getenv(
        "REALTIME_CHANNEL_PREFIX", "realtime:challenge:"
    )
    REALTIME_RECONNECT_MAX_ATTEMPTS: int = int(
        os.getenv("REALTIME_RECONNECT_MAX_ATTEMPTS", 10)
    )
    REALTIME_RECONNECT_BACKOFF_SECONDS: str = os.getenv(
        "REALTIME_RECONNECT_BACKOFF_SECONDS", "1,2,5,10,30"
    )
    # Observers slower than this are dropped
    REALTIME_SEND_TIMEOUT_SECONDS: float = float(
        os.getenv("REALTIME_SEND_TIMEOUT_SECONDS", 2.0)
    )

    @property
    def realtime_backoff_schedule(self) -> List[float]:
        return [
            float(step.strip())
            for step in self.REALTIME_RECONNECT_BACKOFF_SECONDS.split(",")
            if step.strip()
        ]

    class Config:
        env_file = [".env.local", ".env"]
        case_sensitive = True
        extra = "ignore"


# Create settings instance
settings = Settings()
