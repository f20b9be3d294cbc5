"""Deal pulse: source sync, enrichment and daily brief pipeline."""

__version__ = "0.1.0"
