from typing import List, Union, Optional
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "Doctor Booking Service"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    POSTGRES_PORT: str = "5432"
    DATABASE_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    @model_validator(mode='after')
    def assemble_db_connection(self) -> 'Settings':
        if not self.DATABASE_URL:
            if all([self.POSTGRES_USER, self.POSTGRES_PASSWORD, self.POSTGRES_SERVER, self.POSTGRES_DB]):
                self.DATABASE_URL = str(
                    f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
                    f"{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                )
            else:
                # Local development falls back to a file database
                self.DATABASE_URL = "sqlite+aiosqlite:///./bookings.db"

        if self.DATABASE_URL.startswith("postgresql://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("sqlite:///"):
            self.DATABASE_URL = self.DATABASE_URL.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

        # Clean parameters for asyncpg
        self.DATABASE_URL = self.DATABASE_URL.replace("sslmode=require", "ssl=require")
        if "channel_binding=" in self.DATABASE_URL:
            import re
            self.DATABASE_URL = re.sub(r"[&?]channel_binding=[^&]*", "", self.DATABASE_URL)

        return self

    # JWT (tokens are issued by the external auth service)
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    FLOW_STATE_TTL_SECONDS: int = 1800

    # Booking policy
    ADMIN_FEE: int = 2500
    REMOTE_FEE_MULTIPLIER: float = 0.5
    ALLOWED_DURATION_MULTIPLES: List[int] = [1, 2, 3]
    RESERVATION_HOLD_MINUTES: int = 30

    @field_validator("ALLOWED_DURATION_MULTIPLES", mode="before")
    @classmethod
    def assemble_duration_multiples(cls, v: Union[str, List[int]]) -> List[int]:
        if isinstance(v, str) and not v.startswith("["):
            return [int(i) for i in v.split(",") if i.strip()]
        return v

    # Payment gateway
    MIDTRANS_SERVER_KEY: str = ""
    MIDTRANS_IS_PRODUCTION: bool = False
    PAYMENT_EXPIRY_MINUTES: int = 1440
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_GATEWAY_MAX_RETRIES: int = 3
    PAYMENT_GATEWAY_BACKOFF_SECONDS: float = 0.5

    # Reconciliation
    PAYMENT_POLL_INTERVAL_SECONDS: float = 3.0
    EXPIRY_SETTLEMENT_GRACE_SECONDS: float = 60.0
    RECONCILE_SWEEP_MINUTES: int = 5

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')

settings = Settings()
