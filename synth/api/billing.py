"""Checkout, plan changes, customer portal, Stripe webhook and billing status under /api/billing."""
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict

from synth.api.deps import get_billing_provider, get_clock, get_current_user_id
from synth.core.errors import AppError, ValidationError
from synth.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from synth.features.billing.service import (
    change_plan,
    get_billing_status,
    process_webhook_event,
    start_checkout,
    start_portal,
)

router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan_id: str
    success_url: str
    cancel_url: str


class ChangePlanBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan_id: str


class PortalBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    return_url: str


class RedirectUrl(BaseModel):
    url: str


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str
    already_processed: bool


@contextmanager
def _processor_errors_as_502() -> Iterator[None]:
    try:
        yield
    except BillingProviderError as e:
        raise AppError(str(e), code="billing_provider_error", status_code=502) from e


@router.post("/checkout", response_model=RedirectUrl)
def create_checkout(
    body: CheckoutBody,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """503 without Stripe, 400 for a plan with no price, 502 when Stripe fails."""
    with _processor_errors_as_502():
        url = start_checkout(
            user_id=user_id,
            plan_id=body.plan_id,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            provider=provider,
        )
    return RedirectUrl(url=url)


@router.post("/change-plan")
def request_plan_change(
    body: ChangePlanBody,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """Pending until the next invoice is paid; 400 without an existing subscription."""
    with _processor_errors_as_502():
        return change_plan(user_id=user_id, plan_id=body.plan_id, provider=provider)


@router.post("/portal", response_model=RedirectUrl)
def create_portal(
    body: PortalBody,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    with _processor_errors_as_502():
        url = start_portal(user_id=user_id, return_url=body.return_url, provider=provider)
    return RedirectUrl(url=url)


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    # Only signature problems are 400; anything else is a 500 and Stripe redelivers
    raw = await request.body()
    try:
        result = process_webhook_event(dict(request.headers), raw, provider=provider, now=clock())
    except BillingWebhookError as e:
        raise ValidationError(str(e), code="invalid_webhook") from e
    return WebhookAck(event_id=result.event_id, already_processed=result.already_processed)


@router.get("/status")
def read_status(
    user_id: str = Depends(get_current_user_id),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return get_billing_status(user_id, now=clock())
