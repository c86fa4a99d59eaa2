from fastapi import HTTPException, status
from typing import Optional, List


class CustomerNotFoundError(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")


class ServerError(HTTPException):
    def __init__(self, error_detail_message: str):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error_detail_message)


class ValidationError(HTTPException):
    def __init__(self, error_detail_message: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=error_detail_message)


class WebhookError(HTTPException):
    def __init__(self, error_detail_message: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {error_detail_message}")


# ################################################################################################################################
# domain errors raised below the HTTP layer. only the webhook dispatcher and the routes translate them into responses.


class SignatureError(Exception):
    """Malformed, missing, forged or expired webhook signature"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class DownstreamFailure(Exception):
    """Any failure talking to Supabase or Stripe (including timeouts)"""

    def __init__(self, step: str, detail: str):
        super().__init__(f"{step}: {detail}")
        self.step = step
        self.detail = detail


class ReconcileError(DownstreamFailure):
    """Group reconciliation stopped part way through"""

    def __init__(self, customer_id: str, target_tier: str, completed_steps: List[str], failed_step: str, detail: str):
        super().__init__(failed_step, detail)
        self.customer_id = customer_id
        self.target_tier = target_tier
        self.completed_steps = completed_steps


class ConfigurationError(Exception):
    """Missing secret or malformed price/group mapping. Fatal at startup."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []
