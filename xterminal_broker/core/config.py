"""
Broker configuration.

Settings are read from XTERMINAL_* environment variables or a .env file
and may be overridden from the command line (see main.build_parser).
"""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="XTERMINAL_",
        env_file=_CONFIG_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False

    # MQTT broker connection
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = Field(1883, ge=1, le=65535)

    # HTTP(S) front end
    http_host: str = "0.0.0.0"
    http_port: int = Field(8443, ge=1, le=65535)
    document_root: str = "www"
    index_file: str = "xterminal.html"
    use_ssl: bool = True
    ssl_cert: str = "server.pem"
    ssl_key: str = "server.key"

    # Extra "username:password" entries on top of the default one
    http_auth: List[str] = []

    # Sessions
    session_ttl: float = Field(30.0, gt=0)
    session_sweep_interval: float = Field(5.0, gt=0)
    max_sessions: int = Field(1024, ge=1)


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once from the environment."""
    return Settings()
