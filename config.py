from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from the environment (and `.env`) once at startup."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    storage_backend: Literal["memory", "sql", "mongo"] = "memory"
    database_url: Optional[str] = None
    database_name: str = "storefront"

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_image_model: str = "dall-e-3"

    admin_key: Optional[str] = None
    cors_origins: List[str] = ["*"]

    log_level: str = "INFO"
    log_json: bool = False
    port: int = 8000

    @property
    def ai_configured(self) -> bool:
        return bool(self.openai_api_key)
