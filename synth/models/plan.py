"""
synth/models/plan.py

Plan identifiers and descriptive plan configuration.

Plans are a closed set defined in code; they are never persisted per-instance.
A user row only stores the plan name, which is normalized back into PlanId.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict


class PlanId(str, Enum):
    """Subscription tiers, lowest to highest."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    AGENCY = "agency"


class PlanConfig(BaseModel):
    """
    Descriptive metadata for a plan.

    Capability values live in the plan table (synth.features.plans.catalog);
    this model carries what the billing page and upgrade prompts display.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: PlanId
    display_name: str
    rank: int
    monthly_price_usd: int
    log_retention_days: int
    support_tier: str  # none | email | priority | dedicated
    integration_tier: str  # none | basic | all | all+custom
