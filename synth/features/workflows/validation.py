"""Workflow plan schemas and structural validation."""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from synth.core.errors import ValidationError


class WebhookTriggerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1)
    method: str = "POST"


class WebhookTrigger(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["webhook"]
    config: WebhookTriggerConfig


class CronInterval(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(gt=0)
    unit: Literal["seconds", "minutes", "hours", "days"]


class CronTriggerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    cron_expression: Optional[str] = Field(default=None, alias="cronExpression", min_length=1)
    interval: Optional[CronInterval] = None

    @model_validator(mode="after")
    def _require_schedule(self) -> "CronTriggerConfig":
        if self.cron_expression is None and self.interval is None:
            raise ValueError("cron trigger needs cronExpression or interval")
        return self


class CronTrigger(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["cron"]
    config: CronTriggerConfig


class ManualTrigger(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["manual"]
    config: Dict[str, Any] = Field(default_factory=dict)


Trigger = Annotated[Union[WebhookTrigger, CronTrigger, ManualTrigger], Field(discriminator="type")]


class ActionDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)
    on_success_next: List[str] = Field(default_factory=list, alias="onSuccessNext")
    on_failure_next: List[str] = Field(default_factory=list, alias="onFailureNext")


class WorkflowPlan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    intent: Optional[str] = None
    trigger: Trigger
    actions: List[ActionDefinition] = Field(min_length=1)

    def trigger_dict(self) -> Dict[str, Any]:
        return self.trigger.model_dump(by_alias=True, exclude_none=True)

    def actions_list(self) -> List[Dict[str, Any]]:
        return [action.model_dump(by_alias=True) for action in self.actions]


def _structural_errors(plan: WorkflowPlan) -> Optional[str]:
    seen = set()
    for action in plan.actions:
        if action.id in seen:
            return f"Duplicate action id detected: '{action.id}'"
        seen.add(action.id)

    for action in plan.actions:
        for next_id in action.on_success_next:
            if next_id not in seen:
                return f"Action '{action.id}' references unknown onSuccessNext id '{next_id}'."
        for next_id in action.on_failure_next:
            if next_id not in seen:
                return f"Action '{action.id}' references unknown onFailureNext id '{next_id}'."

    incoming = {action_id: 0 for action_id in seen}
    for action in plan.actions:
        for next_id in action.on_success_next + action.on_failure_next:
            incoming[next_id] += 1
    if not any(count == 0 for count in incoming.values()):
        return "No valid starting action found. At least one action must not have a predecessor."

    return None


def validate_workflow_plan(raw: Any) -> WorkflowPlan:
    """Parse and structurally check a workflow plan.

    Raises ValidationError (400) with the schema errors in `details`.
    """
    if isinstance(raw, WorkflowPlan):
        plan = raw
    else:
        try:
            plan = WorkflowPlan.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Workflow plan schema validation failed.",
                details={"details": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc

    problem = _structural_errors(plan)
    if problem:
        raise ValidationError(problem)
    return plan
