from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "MedGuard Access Control"
    VERSION: str = "1.0.0"

    DATABASE_URL: str = "sqlite:///./medguard.db"
    LOG_LEVEL: str = "INFO"

    # Break-glass settings
    EMERGENCY_OVERRIDE_TTL_HOURS: int = 4
    EMERGENCY_OVERRIDE_MIN_REASON_LENGTH: int = 20

    # Audit log query paging
    AUDIT_DEFAULT_PAGE_SIZE: int = 50
    AUDIT_MAX_PAGE_SIZE: int = 100  # Hard cap, caller input cannot exceed this

    # Identity is resolved upstream; only enable behind a gateway that strips client-supplied headers
    TRUST_GATEWAY_HEADERS: bool = False

    class Config:
        env_file = ".env"


settings = Settings()
