"""Price feed and last-quote storage."""
