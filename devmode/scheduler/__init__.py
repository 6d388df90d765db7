"""Auto-revert scheduling."""
