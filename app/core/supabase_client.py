# app/core/supabase_client.py
from functools import lru_cache

from supabase import AsyncClient, Client, acreate_client, create_client

from app.core.config import get_settings

settings = get_settings()


@lru_cache
def supabase_public() -> Client:
    """
    Create a Supabase client with the anon/public key.

    Use cases:
      - calling public edge functions

    Note: This client still respects RLS.
    """
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)


@lru_cache
def supabase_admin() -> Client:
    """
    Create a Supabase client with the service role key.

    Use cases:
      - invoking the order notification edge function
      - any operation that needs to bypass RLS

    WARNING:
      - Never expose service role key to frontend.
      - Only backend should call this.

    Raises:
        RuntimeError: if SUPABASE_SERVICE_ROLE_KEY is not set.
    """
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY in .env")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


async def create_realtime_client(service_role: bool = False) -> AsyncClient:
    """
    Create an async Supabase client for realtime channels.

    Not cached: each realtime consumer owns its client (and its socket)
    and is handed it explicitly, see app/realtime/subscriber.py.
    """
    key = settings.SUPABASE_KEY
    if service_role:
        if not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY in .env")
        key = settings.SUPABASE_SERVICE_ROLE_KEY
    return await acreate_client(settings.SUPABASE_URL, key)
