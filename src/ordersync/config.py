from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    legacy_db_path: str = r"C:\SHARMAQ\SHOficina\dados.mdb"
    legacy_db_password: str = ""
    legacy_query_timeout: float = 15.0
    poll_interval_seconds: float = 5.0
    http_timeout: float = 8.0
    queue_file: Path = Path.home() / ".ordersync" / "pending_queue.json"
    server_url: str = ""
    token: str = ""
    database_url: str = "sqlite:///./ordersync.db"
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    class Config:
        env_prefix = "ORDERSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
