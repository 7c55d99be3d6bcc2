"""Shared Supabase client - single lazy-loaded instance for the entire app."""

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any

from supabase import Client, create_client

from ..core.config import get_settings
from ..core.errors import PersistenceError
from ..core.logging import log_db_query, log_error

_supabase: Client | None = None
_client_lock = threading.Lock()


def get_supabase_client() -> Client:
    """Get or create the shared Supabase client (thread-safe)."""
    global _supabase
    if _supabase is None:
        with _client_lock:
            if _supabase is None:
                settings = get_settings()
                _supabase = create_client(settings.supabase_url, settings.supabase_key)
    return _supabase


class SupabaseRepository:
    """Base for table repositories.

    The supabase-py client is synchronous, so every query runs in a worker
    thread. Failures are logged and re-raised as PersistenceError.
    """

    table: str

    def __init__(self, client: Client | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def _execute(self, operation: str, query: Callable[[], Any]) -> Any:
        start = time.time()
        try:
            result = await asyncio.to_thread(query)
        except Exception as e:
            log_error(f"DB {operation} failed", e, table=self.table)
            raise PersistenceError(operation, self.table, str(e)) from e
        log_db_query(operation, self.table, (time.time() - start) * 1000)
        return result

    @staticmethod
    def _rows(result: Any) -> list[dict[str, Any]]:
        data = getattr(result, "data", None)
        if data and isinstance(data, list):
            return [row for row in data if isinstance(row, dict)]
        return []
