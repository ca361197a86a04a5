"""
synth/models/entitlement.py

Entitlement names and the decision returned by the resolver.
"""

from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict

from synth.models.plan import PlanId


class Entitlement(str, Enum):
    """
    Gated capabilities.

    Countable entitlements carry an integer ceiling (None = unlimited);
    boolean entitlements are simple feature flags.
    """
    MAX_ACTIVE_WORKFLOWS = "maxActiveWorkflows"
    MAX_RUNS_PER_MONTH = "maxRunsPerMonth"
    ALLOW_WORKFLOW_EXECUTION = "allowWorkflowExecution"
    ADVANCED_INTEGRATIONS = "advancedIntegrations"
    CUSTOM_INTEGRATIONS = "customIntegrations"
    CUSTOM_WEBHOOKS = "customWebhooks"
    TEAM_COLLABORATION = "teamCollaboration"
    WHITE_LABEL = "whiteLabel"
    API_ACCESS = "apiAccess"

    @property
    def is_countable(self) -> bool:
        return self in COUNTABLE_ENTITLEMENTS


COUNTABLE_ENTITLEMENTS = frozenset({
    Entitlement.MAX_ACTIVE_WORKFLOWS,
    Entitlement.MAX_RUNS_PER_MONTH,
})

EntitlementValue = Union[bool, int, None]


class EntitlementDecision(BaseModel):
    """
    Outcome of an entitlement check.

    A denial is a normal value, never an exception. `reason` is set whenever
    `allowed` is False and is safe to show to the user as-is.
    """
    model_config = ConfigDict(frozen=True)

    allowed: bool
    entitlement: str
    plan: PlanId
    ceiling: Optional[int] = None
    current_usage: Optional[int] = None
    reason: Optional[str] = None
    upgrade_plan: Optional[PlanId] = None

    @property
    def remaining(self) -> Optional[int]:
        if self.ceiling is None or self.current_usage is None:
            return None
        return max(0, self.ceiling - self.current_usage)
