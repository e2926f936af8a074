"""
Storage layer for Draft Stream.

SQLite ledger for usage and conversation records, plus the key/value
store used for process-wide cache and rate-limit state.
"""
