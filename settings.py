import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 30
    use_transactions: bool = False
    admin_email: str = "admin@example.com"
    admin_password: str = "admin123"
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expires_days=int(os.getenv("JWT_EXPIRES_DAYS", cls.jwt_expires_days)),
            use_transactions=_flag(os.getenv("USE_TRANSACTIONS", "false")),
            admin_email=os.getenv("ADMIN_EMAIL", cls.admin_email),
            admin_password=os.getenv("ADMIN_PASSWORD", cls.admin_password),
            environment=os.getenv("ENVIRONMENT", cls.environment),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
