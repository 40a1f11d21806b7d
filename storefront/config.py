# storefront/config.py
"""
Settings and business constants.
Everything that changes between environments is read from the environment
(a local .env file is loaded first), everything that is a business rule lives
here as a constant so the price calculator and the checkout agree on it.
"""

import logging
import os
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


# Load the environment variables
load_dotenv()


# --- Business constants ---
TAX_RATE = Decimal("0.08")
SHIPPING_COST = Decimal("15.00")
DEFAULT_CURRENCY = "USD"
DEFAULT_SHIPPING_COUNTRY = "USA"
DEFAULT_PRICE_TOLERANCE = Decimal("0.01")

MAX_CART_ITEMS = 50
MAX_ITEM_QUANTITY = 99

# Hosted checkout sessions are expired by the provider after this long
CHECKOUT_SESSION_TTL_SECONDS = 30 * 60
# Webhook event ids are remembered for two days
WEBHOOK_DEDUP_TTL_SECONDS = 48 * 60 * 60
PRODUCT_CACHE_TTL_SECONDS = 300

# Requests allowed per window (count, seconds) for each rate limit tier
RATE_LIMITS = {
    "strict": (10, 60),
    "moderate": (30, 60),
}


class Settings(BaseModel):
    database_url: str
    app_url: str = "http://localhost:3000"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    redis_url: Optional[str] = None
    resend_api_key: Optional[str] = None
    resend_from_email: str = "orders@shopsmart.example"
    log_level: str = "INFO"
    price_tolerance: Decimal = DEFAULT_PRICE_TOLERANCE
    cors_origins: List[str] = ["*"]


def _default_database_url() -> str:
    # database.db sits in the project root, next to the storefront package
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return f"sqlite:///{os.path.join(base_dir, 'database.db')}"


@lru_cache
def get_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or _default_database_url(),
        app_url=os.getenv("APP_URL", "http://localhost:3000"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        redis_url=os.getenv("REDIS_URL") or None,
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        resend_from_email=os.getenv("RESEND_FROM_EMAIL", "orders@shopsmart.example"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        price_tolerance=Decimal(os.getenv("PRICE_TOLERANCE", str(DEFAULT_PRICE_TOLERANCE))),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
