"""Relevance engine: cache-first classification, invalidation, events."""
