"""Data input/output helpers (session CSVs and file paths).

Utility modules here keep disk-level concerns isolated from the rest of the
application:
- :mod:`csv_writer` emits session CSVs in bounded batches.
- :mod:`log_loader` parses session CSVs (current and legacy layouts).
- :mod:`file_paths` centralises session file naming.
"""
