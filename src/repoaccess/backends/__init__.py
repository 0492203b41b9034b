"""Collaborator backends: in-memory for planning and tests, live for apply."""
