#!/usr/bin/env python
"""Run one sync or enrichment pass from the command line (e.g. from cron)."""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from motor_sync.core.config import get_settings, validate_settings
from motor_sync.core.dependencies import (
    build_enrichment_coordinator,
    build_reconciliation_coordinator,
)
from motor_sync.core.enums import SyncMode
from motor_sync.db.client import get_supabase_client
from motor_sync.services.adapters import build_http_client
from motor_sync.services.fetch_cache import FetchCache

USAGE = "Usage: run_sync.py [preview|apply|enrich] [limit]"


async def _run(command: str, limit: int | None) -> bool:
    settings = get_settings()
    supabase = get_supabase_client()
    async with build_http_client(settings.feed_timeout_seconds) as http_client:
        if command == "enrich":
            cache = FetchCache(settings.fetch_cache_size, settings.fetch_cache_ttl)
            coordinator = build_enrichment_coordinator(
                settings, supabase, http_client, cache
            )
            result = await coordinator.run(limit=limit)
        else:
            reconciler = build_reconciliation_coordinator(settings, supabase, http_client)
            result = await reconciler.run(SyncMode(command))
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return result.success


def main():
    args = sys.argv[1:]
    command = args[0] if args else "preview"
    if command not in ("preview", "apply", "enrich"):
        print(USAGE)
        sys.exit(2)
    limit = int(args[1]) if len(args) > 1 else None

    validate_settings()
    ok = asyncio.run(_run(command, limit))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
