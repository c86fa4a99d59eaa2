from pydantic import ValidationError as PydanticValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from app.custom_error import ConfigurationError
from app.models.membership_models import PriceTierMap, TierGroups

# BaseSettings from pydantic-settings pulls values from the system environment first, then from the .env file, then the defaults below.
# Settings are loaded once during app startup (see lifespan in main.py) and handed to every component explicitly.


def _split_ids(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Supabase
    SUPABASE_URL: str
    SUPABASE_KEY: str

    # Stripe settings
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    # lets an unsigned ping (no Stripe-Signature header at all) through with a test ack. never enable in production.
    STRIPE_WEBHOOK_ALLOW_TEST: bool = False

    # price -> tier mapping, comma separated Stripe price ids
    BASIC_PRICE_IDS: str = ""
    PREMIUM_PRICE_IDS: str = ""

    # customer group ids for each tier
    BASIC_GROUP_ID: str
    PREMIUM_GROUP_ID: str

    # bound on every Supabase / Stripe call
    DOWNSTREAM_TIMEOUT_SECONDS: float = 10.0

    # domains
    CLIENT_DOMAIN: str = "http://127.0.0.1:3000"

    @model_validator(mode="after")
    def check_reconciliation_config(self) -> "Settings":
        if not self.STRIPE_WEBHOOK_SECRET.strip():
            raise ValueError("STRIPE_WEBHOOK_SECRET must not be empty")
        if self.STRIPE_WEBHOOK_TOLERANCE_SECONDS <= 0:
            raise ValueError("STRIPE_WEBHOOK_TOLERANCE_SECONDS must be positive")
        if self.DOWNSTREAM_TIMEOUT_SECONDS <= 0:
            raise ValueError("DOWNSTREAM_TIMEOUT_SECONDS must be positive")
        if not self.BASIC_GROUP_ID.strip() or not self.PREMIUM_GROUP_ID.strip():
            raise ValueError("BASIC_GROUP_ID and PREMIUM_GROUP_ID must not be empty")
        if self.BASIC_GROUP_ID.strip() == self.PREMIUM_GROUP_ID.strip():
            raise ValueError("BASIC_GROUP_ID and PREMIUM_GROUP_ID must be different groups")
        basic_prices = set(_split_ids(self.BASIC_PRICE_IDS))
        premium_prices = set(_split_ids(self.PREMIUM_PRICE_IDS))
        if not basic_prices and not premium_prices:
            raise ValueError("at least one of BASIC_PRICE_IDS / PREMIUM_PRICE_IDS must be set")
        overlap = basic_prices & premium_prices
        if overlap:
            raise ValueError(f"price ids mapped to both basic and premium: {', '.join(sorted(overlap))}")
        return self

    @property
    def price_tier_map(self) -> PriceTierMap:
        return PriceTierMap(basic=frozenset(_split_ids(self.BASIC_PRICE_IDS)), premium=frozenset(_split_ids(self.PREMIUM_PRICE_IDS)))

    @property
    def tier_groups(self) -> TierGroups:
        return TierGroups(basic=self.BASIC_GROUP_ID.strip(), premium=self.PREMIUM_GROUP_ID.strip())


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, turning any validation problem into a ConfigurationError"""
    try:
        return Settings(**overrides)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(part) for part in error.get('loc', ())) or 'settings'}: {error.get('msg')}" for error in e.errors()]
        raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}", errors)


def checkout_price_for_plan(settings: Settings, plan: str) -> Optional[str]:
    """First configured price id of a plan, used when starting a new subscription checkout"""
    raw = {"basic": settings.BASIC_PRICE_IDS, "premium": settings.PREMIUM_PRICE_IDS}.get(plan)
    if raw is None:
        return None
    ids = _split_ids(raw)
    return ids[0] if ids else None
