"""Agenda configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Agenda settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    
    # Environment
    ENV: str = "dev"
    
    # Backend-for-frontend API
    API_BASE_URL: str = "http://localhost:3001"
    API_TIMEOUT_SECONDS: float = 30.0
    API_READ_MAX_ATTEMPTS: int = 3  # GETs only, writes are never retried
    
    # Therapist's local timezone (used when an instant carries no offset)
    DEFAULT_TIMEZONE: str = "America/Argentina/Buenos_Aires"
    
    # Incremental reveal (infinite scroll over day buckets)
    REVEAL_PAGE_SIZE: int = 5
    REVEAL_STEP: int = 5
    REVEAL_DEBOUNCE_SECONDS: float = 0.8
    
    # Drawer defaults for new sessions
    DEFAULT_SESSION_START: str = "09:00"
    DEFAULT_SESSION_DURATION_MINUTES: int = 60
    SESSION_DURATION_OPTIONS: str = "30,45,60,90,120"
    DEFAULT_SESSION_COST: int = 8500
    
    @property
    def duration_options_list(self) -> list[int]:
        """Parse SESSION_DURATION_OPTIONS into a list of minutes."""
        return [int(o.strip()) for o in self.SESSION_DURATION_OPTIONS.split(",") if o.strip()]
    
    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
