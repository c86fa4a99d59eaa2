import logging
from typing import Any, Dict, Optional
from app.configs.stripe_config import INTERNAL_CUSTOMER_ID_KEY
from app.custom_error import DownstreamFailure
from app.models.membership_models import CustomerIdentity, SubscriptionSnapshot
from app.services.customer_directory import CustomerDirectory
from app.utils.downstream import call_with_timeout

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Maps a Stripe customer id to the internal customer.

    Resolution order, first match wins:
    1. cached mapping - the customer row already linked to this Stripe customer id
    2. email - from the event, or from the Stripe customer record when the event has none
    3. nothing

    A match found by email is written back (Stripe metadata + the customer row) so the next event stops at step 1.
    Write-back is best-effort: failures are logged, never raised. Lookup failures raise DownstreamFailure.
    """

    def __init__(self, directory: CustomerDirectory, billing, timeout_seconds: float = 10.0):
        self.directory = directory
        self.billing = billing
        self.timeout_seconds = timeout_seconds

    # ---------------------------------------------------------------------------------------------------------------------

    async def resolve(self, snapshot: SubscriptionSnapshot) -> Optional[CustomerIdentity]:
        billing_customer_id = snapshot.billing_customer_id

        if billing_customer_id:
            cached = await call_with_timeout(
                "directory.find_by_external_id", self.directory.find_by_external_id(billing_customer_id), self.timeout_seconds
            )
            if cached:
                logger.info(f"IDENTITY_RESOLVED via=cached billing_customer={billing_customer_id} customer={cached['id']}")
                return self._to_identity(cached, billing_customer_id)

        email = snapshot.customer_email or await self._fetch_billing_email(billing_customer_id)
        if not email:
            logger.info(f"IDENTITY_UNRESOLVED billing_customer={billing_customer_id} reason=no_email")
            return None

        by_email = await call_with_timeout("directory.find_by_email", self.directory.find_by_email(email), self.timeout_seconds)
        if not by_email:
            logger.info(f"IDENTITY_UNRESOLVED billing_customer={billing_customer_id} reason=no_email_match")
            return None

        logger.info(f"IDENTITY_RESOLVED via=email billing_customer={billing_customer_id} customer={by_email['id']}")
        if billing_customer_id:
            await self._write_back(str(by_email["id"]), billing_customer_id)
        return self._to_identity(by_email, billing_customer_id)

    # ---------------------------------------------------------------------------------------------------------------------

    async def _fetch_billing_email(self, billing_customer_id: str) -> Optional[str]:
        if not billing_customer_id:
            return None
        customer = await call_with_timeout("billing.retrieve_customer", self.billing.retrieve_customer(billing_customer_id), self.timeout_seconds)
        if not customer or customer.get("deleted"):
            return None
        return customer.get("email")

    async def _write_back(self, customer_id: str, billing_customer_id: str):
        """Remember the mapping on both sides. Another process may overwrite it; the next resolution heals it."""
        try:
            await call_with_timeout(
                "billing.update_customer_metadata",
                self.billing.update_customer_metadata(billing_customer_id, {INTERNAL_CUSTOMER_ID_KEY: customer_id}),
                self.timeout_seconds,
            )
        except DownstreamFailure as e:
            logger.warning(f"⚠️ IDENTITY_WRITE_BACK_FAILED side=billing billing_customer={billing_customer_id} customer={customer_id} error={e}")

        try:
            await call_with_timeout(
                "directory.link_external_id", self.directory.link_external_id(customer_id, billing_customer_id), self.timeout_seconds
            )
        except DownstreamFailure as e:
            logger.warning(f"⚠️ IDENTITY_WRITE_BACK_FAILED side=directory billing_customer={billing_customer_id} customer={customer_id} error={e}")

    @staticmethod
    def _to_identity(record: Dict[str, Any], billing_customer_id: Optional[str]) -> CustomerIdentity:
        return CustomerIdentity(
            internal_customer_id=str(record["id"]),
            billing_customer_id=billing_customer_id or record.get("stripe_customer_id"),
            email=record.get("email"),
        )
