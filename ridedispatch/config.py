import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    push_timeout_seconds: float = 10.0
    outbox_max_size: int = 10_000
    log_level: str = "INFO"

    # Pricing
    commission_rate: float = 0.12
    no_show_fee: float = 150.0

    # Arrival check
    arrival_radius_meters: float = 500.0

    # Locality index (H3 resolution, ring counts for the search area)
    h3_resolution: int = 8
    search_rings: int = 10
    scheduled_search_rings: int = 15

    # Dispatch waves
    max_dispatch_batch: int = 3
    wave_tick_seconds: int = 10
    wave_interval_seconds: int = 20
    rides_per_tick: int = 50

    # Reaper
    stale_tick_seconds: int = 30
    stale_timeout_minutes: int = 5
    hoarding_tick_seconds: int = 60
    hoarding_timeout_minutes: int = 20

    # Scheduled rides
    activation_tick_seconds: int = 60
    activation_lookahead_minutes: int = 20

    # Worker pool
    worker_threads: int = 16
    tick_deadline_seconds: float = 8.0
    scheduler_enabled: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
