"""Rule-based relevance classification and regional prioritisation."""
