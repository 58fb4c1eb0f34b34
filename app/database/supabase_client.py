from supabase import create_client, acreate_client, Client, AsyncClient
from app.config import settings


class SupabaseClient:
    _client: Client = None

    @classmethod
    def get_client(cls) -> Client:
        """Client with service_role key when configured; bypasses RLS. Use in scripts."""
        if cls._client is None:
            key = settings.supabase_service_role_key or settings.supabase_key
            cls._client = create_client(settings.supabase_url, key)
        return cls._client


def get_supabase() -> Client:
    return SupabaseClient.get_client()


async def create_session_client() -> AsyncClient:
    """Fresh async client per login session; auth tokens live on the client."""
    return await acreate_client(settings.supabase_url, settings.supabase_key)
