import asyncio
from typing import Awaitable, TypeVar
from app.custom_error import DownstreamFailure

T = TypeVar("T")


async def call_with_timeout(step: str, awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Await a Supabase / Stripe call with a time bound. Any failure comes out as DownstreamFailure naming the step."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except DownstreamFailure:
        raise
    except asyncio.TimeoutError:
        raise DownstreamFailure(step, f"timed out after {timeout_seconds}s")
    except Exception as e:
        raise DownstreamFailure(step, str(e) or e.__class__.__name__) from e

