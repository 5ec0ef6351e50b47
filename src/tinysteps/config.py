from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tinysteps.db"

    # Remote endpoint; empty means local-only mode (nothing is ever sent)
    remote_sync_url: str = ""
    remote_timeout_seconds: float = 10.0

    # Reachability: probe host defaults to the remote_sync_url host
    reachability_probe_host: str = ""
    reachability_probe_port: Optional[int] = None
    reachability_probe_timeout: float = 3.0
    reachability_poll_seconds: float = 10.0
    reachability_debounce_seconds: float = 1.5

    # Sync engine
    sync_concurrency: str = "sequential"  # "sequential" or "per_type"
    sync_max_parallel: int = 4
    sync_item_timeout_seconds: float = 15.0
    sync_interval_seconds: int = 300

    # Health check thresholds
    queue_warning_threshold: int = 100
    stale_sync_days: int = 7
    storage_warning_mb: float = 50.0

    # Backups
    snapshot_retention: int = 5
    auto_backup_hours: int = 24
    backup_dir: str = "./backups"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
