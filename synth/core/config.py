import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Session tokens (shared secret with the web app's auth layer)
    AUTH_SECRET: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_STARTER: Optional[str] = None
    STRIPE_PRICE_PRO: Optional[str] = None
    STRIPE_PRICE_AGENCY: Optional[str] = None

    # Pipedream (workflow execution)
    PIPEDREAM_API_KEY: Optional[str] = None
    PIPEDREAM_BASE_URL: str = "https://api.pipedream.com/v1"
    PIPEDREAM_TIMEOUT_SECONDS: float = 30.0

    # App URLs
    BASE_URL: str = "http://localhost:3000"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_PER_MINUTE_DEFAULT: int = 120
    RATE_LIMIT_BURST_DEFAULT: int = 30

    # Subscription policy
    TRIAL_GRANTS_TOP_TIER: bool = True
    TRIAL_PLAN: str = "agency"
    PAST_DUE_GRACE: bool = False  # True keeps paid access while past_due

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


REQUIRED_KEYS = (
    "DATABASE_URL",
    "AUTH_SECRET",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "PIPEDREAM_API_KEY",
)

PRICE_KEYS = ("STRIPE_PRICE_STARTER", "STRIPE_PRICE_PRO", "STRIPE_PRICE_AGENCY")

KNOWN_TRIAL_PLANS = ("starter", "pro", "agency", "growth", "scale")


def config_problems(cfg: Settings) -> List[str]:
    """Human-readable problems with `cfg`. Names keys, never their values."""
    problems = []

    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")

    # Checkout needs a price for every paid plan once Stripe is on
    if getattr(cfg, "STRIPE_SECRET_KEY", None):
        unpriced = [key for key in PRICE_KEYS if not getattr(cfg, key, None)]
        if unpriced:
            problems.append(f"Stripe is enabled but prices are missing: {', '.join(unpriced)}")

    trial_plan = (getattr(cfg, "TRIAL_PLAN", "") or "").strip().lower()
    if trial_plan not in KNOWN_TRIAL_PLANS:
        problems.append(f"TRIAL_PLAN '{trial_plan}' is not a paid plan; trials will grant the top tier")

    return problems


def validate_config(
    strict: Optional[bool] = None,
    settings_obj: Optional[Settings] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Check configuration at startup.

    Strict mode (argument, else CONFIG_STRICT) raises RuntimeError listing
    every problem; otherwise each problem is logged as a warning.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("synth")
    strict_mode = strict if strict is not None else bool(getattr(cfg, "CONFIG_STRICT", False))

    problems = config_problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return not problems
