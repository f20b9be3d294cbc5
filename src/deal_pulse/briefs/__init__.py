"""Daily brief aggregation and persistence."""
