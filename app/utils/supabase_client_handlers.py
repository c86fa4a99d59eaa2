from supabase import acreate_client, AsyncClient
from app.configs.app_settings import Settings

# the client is created once in the app lifespan and kept on app.state; components get it passed in, nothing reads a module global.
# Supabase client doesn't have an explicit close method, shutdown just drops the reference.


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """Create async supabase client - only called once during startup"""
    return await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
