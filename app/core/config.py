import os
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global configuration for environment variables."""

    APP_NAME: str = "AI Chat Proxy"
    ENV: str = os.getenv("ENV", "development")

    # Server config
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8080))

    # Hosted backend (REST gateway, identity, storage)
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    # When set, bearer tokens are verified locally instead of calling /auth/v1/user
    SUPABASE_JWT_SECRET: str | None = None

    # Postgres behind the hosted backend
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "postgres"
    DATABASE_URL: str | None = None

    # Chat proxy behaviour
    STREAM_INCLUDE_USAGE: bool = True
    FORWARD_REQUEST_METADATA: bool = False
    AUDIT_PRE_STREAM_FAILURES: bool = False

    # Client
    CHAT_FUNCTION_NAME: str = "ai-chat"
    CHAT_UPLOAD_BUCKET: str = "ai-chat-uploads"
    CHAT_UPLOAD_PREFIX: str = "python"
    CHAT_CONTEXT_WINDOW: int = 6
    HAPTIC_MIN_INTERVAL_S: float = 0.4
    CLIENT_TIMEOUT_S: float = 60.0
    MALFORMED_CHUNK_POLICY: str = "raise"  # Options: "raise", "skip"

    # Debug
    DEBUG: bool = os.getenv("DEBUG", "True").lower() in ("1", "true")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @property
    def has_database(self) -> bool:
        return bool(self.DATABASE_URL or (self.POSTGRES_HOST and self.POSTGRES_USER))


settings = Settings()
