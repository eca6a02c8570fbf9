from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Provider keys referenced through api_key_env may live in .env as well
load_dotenv()


class Settings(BaseSettings):
    """
    Process-level settings loaded from REVGEO_* environment variables.
    Create a .env file in the working directory to configure these.
    """
    model_config = SettingsConfigDict(env_prefix="REVGEO_", env_file=".env", extra="ignore")

    config_file: Optional[Path] = None  # JSON provider configuration
    default_provider: Optional[str] = None
    locale: Optional[str] = None
    log_level: str = "INFO"
    user_agent: str = "revgeo/0.1"


settings = Settings()
