"""Cache stores for relevance classifications."""
