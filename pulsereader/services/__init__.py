# Services package.
#
# Each module exposes plain async functions that take an AsyncSession as
# their first argument:
#
#   article_service   retrieval, personalization, ingestion with compensation
#   topic_service     case-insensitive topic registry
#   source_service    RSS sources
#   profile_service   per-user reading preferences
#   analysis_service  AI sentiment and topic extraction
#   metrics_service   counts and cache statistics for /api/v1/metrics
#
# Write steps commit themselves; the ``get_db`` dependency only closes
# the session and rolls back whatever is left pending on error.
