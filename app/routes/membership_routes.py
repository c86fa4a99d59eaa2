from fastapi import APIRouter, Request, Depends
from app.models.membership_models import (
    CheckoutSessionResponse,
    CustomerGroupsResponse,
    MembershipCheckoutRequest,
    MembershipStatusResponse,
)
from app.services.membership_services import MembershipService

membership_router = APIRouter(prefix="/membership", tags=["Membership"])


async def get_membership_service(request: Request) -> MembershipService:
    """Dependency to get the MembershipService built at startup"""
    return request.app.state.membership_service


#########################################################################################################################


@membership_router.post("/checkout", response_model=CheckoutSessionResponse)
async def create_membership_checkout(request: MembershipCheckoutRequest, membership_service: MembershipService = Depends(get_membership_service)):
    """Create Stripe subscription checkout session for the basic or premium plan"""
    return await membership_service.create_checkout_session(customer_id=request.customer_id, plan=request.plan)


# ---------------------------------------------------------------------------------------------------------------------


@membership_router.get("/{customer_id}", response_model=MembershipStatusResponse)
async def get_membership_status(customer_id: str, membership_service: MembershipService = Depends(get_membership_service)):
    """Get customer's current membership tier as Stripe sees it"""
    return await membership_service.get_membership_status(customer_id)


# ---------------------------------------------------------------------------------------------------------------------


@membership_router.get("/{customer_id}/groups", response_model=CustomerGroupsResponse)
async def get_customer_groups(customer_id: str, membership_service: MembershipService = Depends(get_membership_service)):
    """Get customer's groups"""
    return await membership_service.get_customer_groups(customer_id)
