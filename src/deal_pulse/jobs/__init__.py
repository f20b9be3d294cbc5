"""Durable job queue backed by SQLite.

One logical queue per job family (daily brief, document processing, email
processing, source sync). Jobs are claimed with a conditional update on the
``status`` column, so several worker threads and processes can share one
database file without a broker.
"""
