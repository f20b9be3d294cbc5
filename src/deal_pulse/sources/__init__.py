"""Source adapters for external document and mail providers."""
