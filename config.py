"""Config management for the Meta Graph MCP server.

Settings come from the environment, optionally seeded from a local .env file.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from graph_client import DEFAULT_USER_AGENT

ENV_FILE = Path(".env")


class Settings:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def app_id(self) -> Optional[str]:
        return self.data.get("FACEBOOK_APP_ID")

    @property
    def app_secret(self) -> Optional[str]:
        return self.data.get("FACEBOOK_APP_SECRET")

    @property
    def host(self) -> str:
        return self.data.get("HOST") or "localhost"

    @property
    def port(self) -> int:
        return int(self.data.get("PORT") or 3000)

    @property
    def base_url(self) -> str:
        url = self.data.get("BASE_URL") or f"http://{self.host}:{self.port}"
        return url.rstrip("/")

    @property
    def jwt_secret(self) -> Optional[str]:
        return self.data.get("JWT_SECRET")

    @property
    def user_agent(self) -> str:
        return self.data.get("META_USER_AGENT") or DEFAULT_USER_AGENT

    @property
    def log_level(self) -> str:
        return (self.data.get("LOG_LEVEL") or "INFO").upper()

    @property
    def log_json(self) -> bool:
        return (self.data.get("LOG_FORMAT") or "").lower() == "json"

    def is_valid(self) -> bool:
        """Check if the Facebook app credentials are present."""
        return bool(self.app_id and self.app_secret)


def load_config(env_file: Path = ENV_FILE) -> Settings:
    """Load settings from the environment (after applying ``env_file`` if it exists)."""
    if env_file.exists():
        load_dotenv(env_file)
    return Settings(dict(os.environ))
