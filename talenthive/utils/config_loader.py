"""
Configuration loader for the marketplace backend.

Runtime settings come from environment variables (a local `.env` is loaded
first); platform fee settings come from config/platform.yml when present.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


class PlatformSettings(BaseModel):
    """Commission, fee and escrow settings applied to every payment"""

    commission_rate: float = Field(default=10.0, ge=0.0, le=100.0)
    min_commission: float = Field(default=1.0, ge=0.0)
    max_commission: float = Field(default=10_000.0, ge=0.0)
    payment_processing_fee: float = Field(default=2.9, ge=0.0, le=100.0)
    tax_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    currency: str = "USD"
    escrow_hold_days: int = Field(default=7, ge=0)


class Settings(BaseModel):
    """Process-wide settings resolved from the environment"""

    database_url: str = ""
    use_postgres: bool = False
    redis_url: str = ""
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    integrations_mode: str = ""
    escrow_hold_days: int = Field(default=7, ge=0)
    escrow_release_interval_hours: float = Field(default=24.0, gt=0)
    escrow_release_on_startup: bool = True
    auth_token_secret: str = "change-me"
    cache_ttl_seconds: int = Field(default=300, ge=1)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    platform: PlatformSettings = Field(default_factory=PlatformSettings)

    @property
    def use_real_payments(self) -> bool:
        mode = self.integrations_mode.strip().lower()
        if mode in {"real", "live"}:
            return True
        if mode in {"mock", "test"}:
            return False
        return bool(self.stripe_secret_key)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def load_platform_settings(config_path: Optional[Path] = None) -> PlatformSettings:
    """
    Load and validate platform fee settings from YAML

    Args:
        config_path: Path to config file. Defaults to config/platform.yml

    Returns:
        Validated PlatformSettings; defaults when the file does not exist

    Raises:
        ValidationError: If the file does not match the schema
    """
    if config_path is None:
        config_path = Path(os.getenv("PLATFORM_CONFIG", Path(__file__).parent.parent.parent / "config" / "platform.yml"))

    if not config_path.exists():
        logger.info("Platform config %s not found; using defaults", config_path)
        return PlatformSettings()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        settings = PlatformSettings(**(data.get("platform") or data))
        logger.info(f"Successfully loaded platform config from {config_path}")
        return settings
    except ValidationError as e:
        logger.error(f"Platform config validation failed: {e}")
        raise


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Build Settings from the current environment."""
    platform = load_platform_settings(config_path)

    hold_days_env = os.getenv("ESCROW_HOLD_DAYS")
    hold_days = int(hold_days_env) if hold_days_env else platform.escrow_hold_days
    platform = platform.model_copy(update={"escrow_hold_days": hold_days})

    origins = os.getenv("CORS_ORIGINS", "*")

    return Settings(
        database_url=os.getenv("DATABASE_URL", ""),
        use_postgres=_env_bool("USE_POSTGRES", False),
        redis_url=os.getenv("REDIS_URL", ""),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        integrations_mode=os.getenv("INTEGRATIONS_MODE", ""),
        escrow_hold_days=hold_days,
        escrow_release_interval_hours=float(os.getenv("ESCROW_RELEASE_INTERVAL_HOURS", "24")),
        escrow_release_on_startup=_env_bool("ESCROW_RELEASE_ON_STARTUP", True),
        auth_token_secret=os.getenv("AUTH_TOKEN_SECRET", "change-me"),
        cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "300")),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        platform=platform,
    )
