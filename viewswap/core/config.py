from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:8081", "http://localhost:19006"]


def _parse_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except ValueError:
        return default.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="viewswap", alias="MONGODB_DB_NAME")
    # Multi-document transactions need a replica set; off means ordered writes with compensation
    mongodb_transactions: bool = Field(default=True, alias="MONGODB_TRANSACTIONS")
    transaction_max_attempts: int = Field(default=3, alias="TRANSACTION_MAX_ATTEMPTS")
    transaction_retry_base_ms: int = Field(default=50, alias="TRANSACTION_RETRY_BASE_MS")

    # Redis (arq worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:8081,http://localhost:19006",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )
    admin_user_ids_raw: str = Field(default="", alias="ADMIN_USER_IDS")
    # Shared secret of the identity-provider bridge that opens sessions
    identity_bridge_key: str = Field(default="", alias="IDENTITY_BRIDGE_KEY")

    @property
    def cors_origins(self) -> List[str]:
        return _parse_list(getattr(self, "cors_origins_raw", None), _DEFAULT_CORS)

    @property
    def admin_user_ids(self) -> List[str]:
        return _parse_list(getattr(self, "admin_user_ids_raw", None), [])

    # Accounts
    signup_bonus_coins: int = Field(default=100, alias="SIGNUP_BONUS_COINS")
    vip_price_coins: int = Field(default=500, alias="VIP_PRICE_COINS")
    vip_duration_days: int = Field(default=30, alias="VIP_DURATION_DAYS")
    vip_discount_percent: int = Field(default=10, alias="VIP_DISCOUNT_PERCENT")

    # Promotion lifecycle
    hold_minutes: int = Field(default=10, alias="HOLD_MINUTES")
    full_refund_window_minutes: int = Field(default=10, alias="FULL_REFUND_WINDOW_MINUTES")
    late_refund_percent: int = Field(default=80, alias="LATE_REFUND_PERCENT")
    min_duration_seconds: int = Field(default=10, alias="MIN_DURATION_SECONDS")
    max_duration_seconds: int = Field(default=600, alias="MAX_DURATION_SECONDS")
    min_target_views: int = Field(default=1, alias="MIN_TARGET_VIEWS")
    max_target_views: int = Field(default=1000, alias="MAX_TARGET_VIEWS")
    min_title_length: int = Field(default=5, alias="MIN_TITLE_LENGTH")
    max_title_length: int = Field(default=100, alias="MAX_TITLE_LENGTH")

    # Pricing: ceil(views * seconds * num / den)
    cost_per_view_second_num: int = Field(default=8, alias="COST_PER_VIEW_SECOND_NUM")
    cost_per_view_second_den: int = Field(default=50, alias="COST_PER_VIEW_SECOND_DEN")

    # Rewards
    allow_repeat_rewards: bool = Field(default=False, alias="ALLOW_REPEAT_REWARDS")
    queue_default_limit: int = Field(default=50, alias="QUEUE_DEFAULT_LIMIT")


@lru_cache
def get_settings() -> Settings:
    return Settings()
