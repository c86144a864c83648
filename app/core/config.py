from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    public_base_url: str = Field(default="http://localhost:3000", alias="PUBLIC_BASE_URL")
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    # MongoDB (website data)
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="realm_shop", alias="MONGODB_DB_NAME")
    # Multi-document transactions need a replica set; standalone dev servers can opt out.
    mongodb_transactions: bool = Field(default=True, alias="MONGODB_TRANSACTIONS")

    # Realm databases (game server auth + characters, MySQL)
    realm_auth_db_url: str = Field(
        default="mysql+aiomysql://root:@localhost:3306/auth",
        alias="REALM_AUTH_DB_URL",
    )
    realm_characters_db_url: str = Field(
        default="mysql+aiomysql://root:@localhost:3306/characters",
        alias="REALM_CHARACTERS_DB_URL",
    )
    realm_expansion: int = Field(default=2, alias="REALM_EXPANSION")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Game-world SOAP endpoint
    soap_host: str = Field(default="127.0.0.1", alias="SOAP_HOST")
    soap_port: int = Field(default=7878, alias="SOAP_PORT")
    soap_username: str = Field(default="", alias="SOAP_USERNAME")
    soap_password: str = Field(default="", alias="SOAP_PASSWORD")
    soap_timeout_seconds: float = Field(default=10.0, alias="SOAP_TIMEOUT_SECONDS")

    # Razorpay
    razorpay_key_id: str = Field(default="", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(default="", alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: str = Field(default="", alias="RAZORPAY_WEBHOOK_SECRET")
    payments_currency: str = Field(default="EUR", alias="PAYMENTS_CURRENCY")
    checkout_expiry_seconds: int = Field(default=30 * 60, alias="CHECKOUT_EXPIRY_SECONDS")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Shop
    shop_name: str = Field(default="Realm Shop", alias="SHOP_NAME")
    max_delivery_attempts: int = Field(default=12, alias="MAX_DELIVERY_ATTEMPTS")
    delivery_sweep_batch: int = Field(default=100, alias="DELIVERY_SWEEP_BATCH")
    delivery_sweep_interval_minutes: int = Field(default=5, alias="DELIVERY_SWEEP_INTERVAL_MINUTES")
    delivery_lease_seconds: int = Field(default=120, alias="DELIVERY_LEASE_SECONDS")
    delivery_grace_seconds: int = Field(default=120, alias="DELIVERY_GRACE_SECONDS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
