"""
Scheduler App - Recovery and Maintenance

Responsibilities:
- Periodic retry sweep: re-dispatch stuck articles, terminalize exhausted ones
- Periodic eviction of old cached article content
- Own the process-wide components (store, cache, dispatcher) and inject them

Triggers:
- RETRY_SCHEDULE_CRON (default every 5 minutes)
- CACHE_CLEANUP_CRON (default daily at 03:00)
"""
