# clinic_availability/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    database_url: str = "sqlite:///./clinic.db"
    redis_url: str | None = None
    timezone: str = "Europe/Amsterdam"

    # Slot engine knobs (see services/slots/config.py)
    horizon_days: int = 90
    min_advance_minutes: int = 60
    slot_step_minutes: int = 15
    cache_ttl_seconds: int = 20
    cache_max_size: int = 200
    max_heatmap_days: int = 62
    heatmap_workers: int = 4
    heatmap_timeout_seconds: float = 10.0
    continuation_ttl_days: int = 30
    hold_ttl_minutes: int = 30

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative sqlite path is resolved against the project root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
