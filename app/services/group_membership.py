from supabase import AsyncClient
from typing import Any, Dict, List, Protocol

class GroupMembership(Protocol):
    async def add_member(self, group_id: str, customer_id: str) -> None: ...

    async def remove_member(self, group_id: str, customer_id: str) -> bool: ...

    async def list_groups(self, customer_id: str) -> List[Dict[str, Any]]: ...

class SupabaseGroupMembership:
    """Customer group membership rows in the Supabase "customer_group_members" table"""

    def __init__(self, supabase_client: AsyncClient):
        self.supabase_client = supabase_client

    async def add_member(self, group_id: str, customer_id: str) -> None:
        # upsert on the (group_id, customer_id) pair, so adding an existing member is a no-op
        await (
            self.supabase_client.table("customer_group_members")
            .upsert({"group_id": group_id, "customer_id": customer_id}, on_conflict="group_id,customer_id", ignore_duplicates=True)
            .execute()
        )

    async def remove_member(self, group_id: str, customer_id: str) -> bool:
        """Returns False when the customer was not a member (nothing deleted)"""
        result = await self.supabase_client.table("customer_group_members").delete().eq("group_id", group_id).eq("customer_id", customer_id).execute()
        return bool(result.data)

    async def list_groups(self, customer_id: str) -> List[Dict[str, Any]]:
        result = (
            await self.supabase_client.table("customer_group_members")
            .select("group_id, customer_groups(id, code, name)")
            .eq("customer_id", customer_id)
            .execute()
        )

        groups = []
        for row in result.data or []:
            group = row.get("customer_groups") or {}
            groups.append({"id": str(group.get("id") or row["group_id"]), "code": group.get("code"), "name": group.get("name")})
        return groups
