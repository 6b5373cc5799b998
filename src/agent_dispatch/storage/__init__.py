"""SQLite persistence for credentials and the dispatch ledger."""
