"""Core (non-CLI) functionality for worklog."""
