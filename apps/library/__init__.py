"""
Library App - Read Side of the Reading List

Responsibilities:
- Serve article content from the cache, re-fetching on a cache miss
- Literal full-text search over a user's cached content plus metadata
- Generate and persist three-length summaries on demand

Every entry point takes a user_id and never reads another user's data.
"""
