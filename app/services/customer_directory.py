from supabase import AsyncClient
from typing import Any, Dict, Optional, Protocol
from app.models.membership_models import MembershipTier

class CustomerDirectory(Protocol):
    async def find_by_external_id(self, billing_customer_id: str) -> Optional[Dict[str, Any]]: ...

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]: ...

    async def find_by_id(self, customer_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_tier_field(self, customer_id: str, tier: MembershipTier) -> None: ...

    async def link_external_id(self, customer_id: str, billing_customer_id: str) -> None: ...

class SupabaseCustomerDirectory:
    """Customer records of the commerce platform, read from the Supabase "customers" table"""

    def __init__(self, supabase_client: AsyncClient):
        self.supabase_client = supabase_client

    async def _first(self, column: str, value: str) -> Optional[Dict[str, Any]]:
        result = (
            await self.supabase_client.table("customers")
            .select("id, email, stripe_customer_id, membership_tier")
            .eq(column, value)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def find_by_external_id(self, billing_customer_id: str) -> Optional[Dict[str, Any]]:
        return await self._first("stripe_customer_id", billing_customer_id)

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        # ilike without wildcards is a case-insensitive equality match
        result = (
            await self.supabase_client.table("customers")
            .select("id, email, stripe_customer_id, membership_tier")
            .ilike("email", email.strip())
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def find_by_id(self, customer_id: str) -> Optional[Dict[str, Any]]:
        return await self._first("id", customer_id)

    async def update_tier_field(self, customer_id: str, tier: MembershipTier) -> None:
        """Mirror the tier onto the customer row, "none" is stored as NULL"""
        value = None if tier == MembershipTier.NONE else tier.value
        await self.supabase_client.table("customers").update({"membership_tier": value}).eq("id", customer_id).execute()

    async def link_external_id(self, customer_id: str, billing_customer_id: str) -> None:
        await self.supabase_client.table("customers").update({"stripe_customer_id": billing_customer_id}).eq("id", customer_id).execute()
