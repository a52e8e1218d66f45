"""
Extractor App - Article Ingestion

Responsibilities:
- Accept URL and long-message submissions as pending articles
- Dispatch one extraction worker per article on a thread pool
- Fetch pages with SSRF protection, extract readable content and metadata
- Tag articles through the LLM collaborator and cache the extracted HTML
- Record every outcome on the article row (completed / failed)
- Optionally publish completion events to Redis Pub/Sub

Cache layout:
- {CACHE_DIR}/{user_id}/{article_id}.html
"""
