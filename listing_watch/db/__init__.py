"""Persistence: ORM models, session factory and the watch repository."""
