from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    # Tokens are issued by the external identity provider; we only verify them.
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Optimistic-lock retries for roster mutations before answering 409
    capacity_conflict_retries: int = Field(3, alias="CAPACITY_CONFLICT_RETRIES", ge=0)
    # Share of the global cap above which an event is reported as FILLING
    filling_threshold: float = Field(0.8, alias="FILLING_THRESHOLD", gt=0, le=1)

    hub_page_size: int = Field(12, alias="HUB_PAGE_SIZE", ge=1)
    max_page_size: int = Field(100, alias="MAX_PAGE_SIZE", ge=1)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
