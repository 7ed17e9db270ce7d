"""
Sync App - Phase 1: Tracker Ingestion

Responsibilities:
- Scheduled execution (cron via APScheduler) or RUN_ONCE
- Sequential search pagination per project (startAt/maxResults)
- Bounded-concurrency detail fetches under one global semaphore
- Rate-limit retries honoring Retry-After (shared tenacity policy)
- Single batch writer upserting work items into SQLite
- Publish a Redis Pub/Sub event once the run is persisted

Output:
- SQLite table work_items (one row per item identifier)
- Redis event: channel=tracker.sync_completed, payload={type, run_id, projects, item_ids, ts}
"""
