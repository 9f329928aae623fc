"""Configuration management for the vote integrity service."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "vote-integrity"
    API_VERSION: str = "v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Storage backend: "postgres" or "sqlite"
    DATABASE_BACKEND: str = "postgres"
    SQLITE_PATH: str = "vote_integrity.db"

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "election_db"
    POSTGRES_USER: str = "election_user"
    POSTGRES_PASSWORD: str = "election_pass"

    # Connection pools
    POSTGRES_POOL_MIN_SIZE: int = 2
    POSTGRES_POOL_MAX_SIZE: int = 10

    # Secrets
    VOTE_HASH_SECRET: Optional[str] = None
    STUDENT_ID_ENCRYPTION_KEY: Optional[str] = None
    ADMIN_API_KEY: Optional[str] = None

    # Rate limiting
    RATE_LIMIT: str = "30/minute"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Request size limits
    MAX_BATCH_PROOFS: int = 100
    MAX_VOTES_PER_CAST: int = 50

    # Results
    DEFAULT_EXECUTIVE_QUORUM: float = 0.10
    DEFAULT_DIRECTOR_QUORUM: float = 0.10
    DEFAULT_REFERENDUM_QUORUM: float = 0.20

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
