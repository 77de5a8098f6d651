# backend/homeserve/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/homeserve.db"
    redis_url: str = "redis://localhost:6379/0"

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_api_url: str = "https://api.razorpay.com/v1"
    payment_timeout_seconds: float = 10.0

    outbox_poll_seconds: float = 1.0
    outbox_batch_size: int = 100
    outbox_max_attempts: int = 5
    outbox_claim_seconds: int = 60  # a claimed row is retried after this if never marked

    default_currency: str = "INR"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path → absolute, rooted at the repository
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
