from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Database Configuration
    database_url: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: Optional[str] = None

    # Authentication
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: Optional[int] = 60

    @field_validator('algorithm', mode='before')
    @classmethod
    def parse_algorithm(cls, v):
        if v is None or v == '':
            return "HS256"
        return v

    @field_validator('access_token_expire_minutes', mode='before')
    @classmethod
    def parse_token_expire(cls, v):
        if v is None or v == '':
            return 60
        return int(v)

    # CORS - comma separated list of origins
    cors_origins: str = "http://localhost:3000,http://localhost:4200,http://127.0.0.1:4200"

    # Logging
    log_level: str = "INFO"

    # Rate limiting (login / registration)
    rate_limit_enabled: bool = True

    # Accounting defaults
    default_currency: str = "NGN"
    invoice_due_days: int = 30

    @field_validator('invoice_due_days', mode='before')
    @classmethod
    def parse_due_days(cls, v):
        if v is None or v == '':
            return 30
        return int(v)

    @property
    def database_connection_url(self) -> str:
        """Build database URL from individual components or use direct URL"""
        # Prioritize PostgreSQL if individual components are available
        if all([self.db_username, self.db_password, self.db_host, self.db_port, self.db_name]):
            return f"postgresql://{self.db_username}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
        elif self.database_url:
            return self.database_url
        else:
            return "sqlite:///./ledgerbook.db"  # Fallback to SQLite

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    class Config:
        env_file = ".env"


settings = Settings()
