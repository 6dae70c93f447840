# core/supabase_client.py
from supabase import create_client, Client
from core.config import settings, logger
from typing import Dict
import asyncio

# Table holding one metadata row per stored file
FILES_TABLE = "files"

# Shared clients, one per key type ("anon" / "service")
_supabase_clients: Dict[str, Client] = {}
_init_lock = asyncio.Lock()


def _credentials(use_service_key: bool):
    key = settings.SUPABASE_SERVICE_KEY if use_service_key else settings.SUPABASE_KEY
    if not settings.SUPABASE_URL or not key:
        missing_key = "Service Role Key" if use_service_key else "Anon Key"
        logger.error(f"Supabase URL or {missing_key} not configured. Cannot create client.")
        raise ValueError(f"Supabase URL or {missing_key} not configured")
    return settings.SUPABASE_URL, key


async def _build_client(use_service_key: bool) -> Client:
    url, key = _credentials(use_service_key)
    # create_client is synchronous
    return await asyncio.to_thread(create_client, url, key)


async def get_supabase_client(use_service_key=False) -> Client:
    """
    Returns the shared Supabase client for the given key type, creating it once.

    Raises ValueError when the URL or key is missing, RuntimeError when the
    client cannot be created.
    """
    client_type = "service" if use_service_key else "anon"
    if client_type in _supabase_clients:
        return _supabase_clients[client_type]

    async with _init_lock:
        if client_type not in _supabase_clients:
            logger.info(f"Initializing Supabase client with {client_type} key...")
            try:
                _supabase_clients[client_type] = await _build_client(use_service_key)
            except ValueError:
                raise
            except Exception as e:
                logger.error(f"Failed to initialize Supabase {client_type} client: {e}", exc_info=True)
                raise RuntimeError(f"Failed to initialize Supabase client: {e}")
            logger.info(f"Supabase {client_type} client initialized.")
    return _supabase_clients[client_type]


async def get_data_client() -> Client:
    """Client used for table and storage access: service role if configured, anon otherwise."""
    return await get_supabase_client(use_service_key=bool(settings.SUPABASE_SERVICE_KEY))


async def create_auth_client() -> Client:
    """
    Returns a fresh, uncached anon client for sign-up / sign-in calls.

    Signing in stores the user's session on the client that made the call, so
    these calls must never run on the shared cached clients.
    """
    return await _build_client(use_service_key=False)
