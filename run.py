import os

import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    # Single worker: per-record write locks and the fetch cache live in
    # process memory and are not shared across forked workers.
    workers = int(os.environ.get("WEB_CONCURRENCY", 1))
    uvicorn.run(
        "motor_sync.app.main:app",
        host="0.0.0.0",
        port=port,
        workers=workers,
    )
