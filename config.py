import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    openrouter_api_key: str
    database_url: str
    outscraper_api_key: str
    google_maps_key: str
    model_fast: str
    model_pro: str
    sync_interval_seconds: int

    @property
    def remote_enabled(self) -> bool:
        return bool(self.database_url)

    @classmethod
    def from_env(cls) -> "Config":
        openrouter_key = os.getenv("OPENROUTER_API_KEY", "")
        database_url = os.getenv("DATABASE_URL", "")
        outscraper_key = os.getenv("OUTSCRAPER_API_KEY", "")
        maps_key = os.getenv("GOOGLE_MAPS_KEY", "")
        model_fast = os.getenv("MODEL_FAST", "google/gemini-2.5-flash")
        model_pro = os.getenv("MODEL_PRO", "google/gemini-2.5-pro")
        interval = os.getenv("SYNC_INTERVAL_SECONDS", "60")

        missing = []
        if not openrouter_key:
            missing.append("OPENROUTER_API_KEY")

        if missing:
            raise ValueError(f"Fehlende Umgebungsvariablen: {', '.join(missing)}")

        try:
            sync_interval = int(interval)
        except ValueError:
            raise ValueError(f"SYNC_INTERVAL_SECONDS ist keine Zahl: {interval!r}")
        if sync_interval <= 0:
            raise ValueError("SYNC_INTERVAL_SECONDS muss größer als 0 sein")

        return cls(
            openrouter_api_key=openrouter_key,
            database_url=database_url,
            outscraper_api_key=outscraper_key,
            google_maps_key=maps_key,
            model_fast=model_fast,
            model_pro=model_pro,
            sync_interval_seconds=sync_interval,
        )
