from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from typing import Optional
from app.configs.app_settings import Settings, load_settings
from app.configs.stripe_config import StripeBillingClient
from app.utils.supabase_client_handlers import create_supabase_client
from app.routes.stripe_webhook_route import stripe_webhook_router
from app.routes.membership_routes import membership_router
from app.services.customer_directory import SupabaseCustomerDirectory
from app.services.group_membership import SupabaseGroupMembership
from app.services.signature_verifier import SignatureVerifier
from app.services.identity_resolver import IdentityResolver
from app.services.tier_classifier import TierClassifier
from app.services.group_reconciler import GroupReconciler
from app.services.webhook_dispatcher import WebhookDispatcher
from app.services.membership_services import MembershipService
import logging

logger = logging.getLogger(__name__)

# route prefix. fixed at import time, the module-level app is built before settings are loaded in the lifespan
API_V1_STR = "/api/v1"


def build_webhook_dispatcher(settings: Settings, directory, groups, billing) -> WebhookDispatcher:
    """Wire the reconciliation components with their collaborators"""
    timeout = settings.DOWNSTREAM_TIMEOUT_SECONDS
    return WebhookDispatcher(
        verifier=SignatureVerifier(
            secret=settings.STRIPE_WEBHOOK_SECRET,
            tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            allow_test_ping=settings.STRIPE_WEBHOOK_ALLOW_TEST,
        ),
        resolver=IdentityResolver(directory, billing, timeout_seconds=timeout),
        classifier=TierClassifier(settings.price_tier_map),
        reconciler=GroupReconciler(directory, groups, settings.tier_groups, timeout_seconds=timeout),
    )


def build_membership_service(settings: Settings, directory, groups, billing) -> MembershipService:
    return MembershipService(settings, directory, groups, billing, TierClassifier(settings.price_tier_map))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # before yield = code to run during startup. a ConfigurationError here aborts startup, so no traffic is accepted.
        app_settings = settings or load_settings()
        if app_settings.STRIPE_WEBHOOK_ALLOW_TEST:
            logger.warning("⚠️ STRIPE_WEBHOOK_ALLOW_TEST is on: unsigned webhook pings are acknowledged")

        supabase_client = await create_supabase_client(app_settings)
        logger.info("✅ Supabase async client initialized")

        directory = SupabaseCustomerDirectory(supabase_client)
        groups = SupabaseGroupMembership(supabase_client)
        billing = StripeBillingClient(app_settings.STRIPE_SECRET_KEY)

        app.state.settings = app_settings
        app.state.supabase_client = supabase_client
        app.state.webhook_dispatcher = build_webhook_dispatcher(app_settings, directory, groups, billing)
        app.state.membership_service = build_membership_service(app_settings, directory, groups, billing)

        yield
        # after yield = code to run during shutdown
        app.state.supabase_client = None
        logger.info("✅ Supabase client closed")

    app = FastAPI(title="Membership Sync API", version="1.0.0", lifespan=lifespan)

    # Global Exception Handler for request validation errors (body, query and path params)
    @app.exception_handler(RequestValidationError)
    async def custom_request_validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors"""
        return JSONResponse(status_code=400, content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())})

    # Include routers
    app.include_router(stripe_webhook_router, prefix=API_V1_STR)
    app.include_router(membership_router, prefix=API_V1_STR)

    @app.get("/")
    async def root():
        return {"message": "Welcome to Membership Sync API"}

    return app


app = create_app()
