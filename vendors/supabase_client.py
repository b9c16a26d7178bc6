# vendors/supabase_client.py — shared Supabase client

from functools import lru_cache

from supabase import Client, create_client

from app.settings import get_settings


@lru_cache(maxsize=1)
def get_client() -> Client:
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
