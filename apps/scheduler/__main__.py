"""
Scheduler Module Entry Point

Allows execution via: python -m apps.scheduler

Delegates to the ingestion scheduler for all execution modes (scheduled and RUN_ONCE).
"""

import asyncio

from apps.scheduler.scheduler import main

if __name__ == "__main__":
    asyncio.run(main())
