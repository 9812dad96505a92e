"""Shared types, configuration, scoring and logging for the siftmatch pipeline."""
