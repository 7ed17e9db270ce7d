"""
Extraction App - Phase 2: Linked Content Extraction

Responsibilities:
- Subscribe to Redis Pub/Sub channel: tracker.sync_completed
- Load the synced work items and the links discovered in them
- Produce extraction jobs for supported platforms (Google Docs/Sheets/Slides, Slack)
- Global priority queue (High > Medium > Low, then creation time)
- Fixed worker pool with per-platform rate limiters and bounded retries
- Persist extracted documents through a single saver

Output:
- SQLite table extracted_documents (one row per successful extraction)
"""
