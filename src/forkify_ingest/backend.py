from __future__ import annotations
from supabase import Client, create_client
from forkify_ingest.config import Config


def create_supabase_client(config: Config) -> Client:
    if not config.supabase_url or not config.supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")
    return create_client(config.supabase_url, config.supabase_key)
