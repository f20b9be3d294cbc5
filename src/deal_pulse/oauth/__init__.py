"""OAuth credential refresh for source connections."""
