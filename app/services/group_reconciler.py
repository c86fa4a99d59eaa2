import logging
from typing import List
from app.custom_error import DownstreamFailure, ReconcileError
from app.models.membership_models import MembershipTier, TierGroups
from app.services.customer_directory import CustomerDirectory
from app.services.group_membership import GroupMembership
from app.utils.downstream import call_with_timeout

logger = logging.getLogger(__name__)


class GroupReconciler:
    """Brings a customer's tier groups and membership_tier field in line with a target tier.

    Always a full reset-then-set:
    1. remove from every tier group except the target ("not a member" counts as success)
    2. add to the target group, if any
    3. write the tier field (none -> NULL)
    The steps are not atomic. If one fails, the completed steps are logged and ReconcileError is raised.
    """

    def __init__(self, directory: CustomerDirectory, groups: GroupMembership, tier_groups: TierGroups, timeout_seconds: float = 10.0):
        self.directory = directory
        self.groups = groups
        self.tier_groups = tier_groups
        self.timeout_seconds = timeout_seconds

    async def reconcile(self, customer_id: str, target_tier: MembershipTier) -> None:
        target_group = self.tier_groups.group_for(target_tier)
        completed: List[str] = []
        step = ""

        try:
            for group_id in self.tier_groups.all_groups():
                if group_id == target_group:
                    continue
                step = f"remove_member:{group_id}"
                await self._remove(group_id, customer_id)
                completed.append(step)

            if target_group is not None:
                step = f"add_member:{target_group}"
                await call_with_timeout(step, self.groups.add_member(target_group, customer_id), self.timeout_seconds)
                completed.append(step)

            step = "update_tier_field"
            await call_with_timeout(step, self.directory.update_tier_field(customer_id, target_tier), self.timeout_seconds)
            completed.append(step)

        except DownstreamFailure as e:
            # enough detail to repair by hand or by replaying the event
            logger.error(
                f"❌ RECONCILE_PARTIAL customer={customer_id} target_tier={target_tier.value} "
                f"completed={','.join(completed) or '-'} failed_step={step} error={e.detail}"
            )
            raise ReconcileError(customer_id, target_tier.value, completed, step, e.detail) from e

        logger.info(f"✅ RECONCILED customer={customer_id} tier={target_tier.value} group={target_group or '-'}")

    async def _remove(self, group_id: str, customer_id: str):
        try:
            removed = await call_with_timeout(f"remove_member:{group_id}", self.groups.remove_member(group_id, customer_id), self.timeout_seconds)
        except DownstreamFailure as e:
            logger.warning(f"GROUP_REMOVE group={group_id} customer={customer_id} outcome=error error={e.detail}")
            raise

        if removed:
            logger.info(f"GROUP_REMOVE group={group_id} customer={customer_id} outcome=removed")
        else:
            logger.debug(f"GROUP_REMOVE group={group_id} customer={customer_id} outcome=not_member")
