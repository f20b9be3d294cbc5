"""Job processors invoked by worker pools, one per queue."""
