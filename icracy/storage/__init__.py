"""Persistence: SQLAlchemy schema, the transactional store and read-side reports."""
