"""
synth/models/subscription.py

SubscriptionState: the raw subscription fields stored on a user row.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class SubscriptionState(BaseModel):
    """
    Persisted subscription fields for one user.

    Written by billing webhooks, read by every gated operation. Values are
    kept exactly as stored (the plan may be an alias or an unknown string);
    interpretation happens in the subscription state reader.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    subscription_plan: Optional[str] = None
    subscription_status: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    subscription_renewal_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
