"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    APP_NAME: str = "Dataflow Workflow Engine"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Workflow / query definition / execution result store
    DATABASE_URL: str = "sqlite+aiosqlite:///./dataflow.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Workspace database receiving web service response tables
    WORKSPACE_DATABASE_URL: str = "sqlite+aiosqlite:///./workspace.db"

    # Engine policy
    DEFAULT_STEP_TIMEOUT_SECONDS: int = 300
    # fixed, linear or exponential backoff between a step's maxRetries retries.
    # "none" is an operator override: no step is retried, whatever its maxRetries.
    STEP_RETRY_POLICY: str = "linear"
    STEP_RETRY_BASE_DELAY: float = 1.0
    STEP_RETRY_MAX_DELAY: float = 60.0
    MAX_STEP_EXECUTIONS: int = 1000

    # Web service steps
    WEB_SERVICE_RETRY_BASE_DELAY: float = 1.0
    HTTP_BLOCK_PRIVATE_NETWORKS: bool = False

    # Data transfer
    DEFAULT_BATCH_SIZE: int = 1000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Settings read once per process; tests build Settings() directly to override."""
    return Settings()
