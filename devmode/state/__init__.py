"""Persisted mode and configuration.

- Mode: Active or Protected, Protected by default
- Configuration: the validated option record
- StateStore: the file-backed single source of truth
"""
