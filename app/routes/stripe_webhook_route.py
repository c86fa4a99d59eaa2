from fastapi import APIRouter, Request, Depends
from app.models.stripe_webhook_models import StripeWebhookEventResponse, DispatchOutcome
from app.services.webhook_dispatcher import WebhookDispatcher
from app.custom_error import WebhookError
import logging

stripe_webhook_router = APIRouter(prefix="/stripe", tags=["Webhooks"])
logger = logging.getLogger(__name__)


async def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    """Dependency to get the WebhookDispatcher built at startup"""
    return request.app.state.webhook_dispatcher


# ################################################################################################################################


@stripe_webhook_router.post("/webhooks", response_model=StripeWebhookEventResponse)
async def stripe_webhook_handler(request: Request, dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher)):
    """Handle Stripe subscription webhook events"""

    # the exact bytes Stripe sent. never parse and re-serialize before verification, the signature covers these bytes.
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    result = await dispatcher.handle(payload, sig_header)

    # only a signature failure is answered with an error. everything else is acknowledged so Stripe does not retry.
    if result.outcome == DispatchOutcome.REJECTED:
        raise WebhookError(result.message)

    if result.outcome == DispatchOutcome.TEST_PING:
        return StripeWebhookEventResponse(status="success", message="ok-test", processed=False)

    return StripeWebhookEventResponse(
        status="success",
        message=result.message,
        event_type=result.event_type,
        processed=result.outcome == DispatchOutcome.RECONCILED,
    )
