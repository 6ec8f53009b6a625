from typing import Optional

from supabase import create_client, Client

from ghostbank.config import Settings, get_settings


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """
    Client for the users and transactions tables.

    The key is the project's anon key; the wallet tables are expected to be
    reachable without row level security, like the web app that shares them.
    """
    settings = settings or get_settings()
    return create_client(settings.supabase_url, settings.supabase_key)
