from enum import Enum
from typing import List, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class CredentialMode(str, Enum):
    """How the bearer token reaches the analytics engine."""

    ACCESS_TOKEN = "access_token"
    CONNECTION_STRING = "connection_string"


class Settings(BaseSettings):
    # Identity provider
    TENANT_ID: Optional[str] = None
    AUTHORITY_URL: Optional[str] = None
    CLIENT_ID: str
    CLIENT_SECRET: SecretStr
    SCOPE: str = "https://analysis.windows.net/powerbi/api/.default"
    AUTH_TIMEOUT_SECONDS: float = 30.0

    # Analytics engine
    WORKSPACE_CONNECTION: str
    CREDENTIAL_MODE: CredentialMode = CredentialMode.ACCESS_TOKEN
    ENGINE_TIMEOUT_SECONDS: float = 120.0

    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def authority(self) -> Optional[str]:
        if self.AUTHORITY_URL:
            return self.AUTHORITY_URL.rstrip("/")
        if self.TENANT_ID:
            return f"https://login.microsoftonline.com/{self.TENANT_ID}"
        return None


# Create a single instance of the settings to use everywhere
settings = Settings()
