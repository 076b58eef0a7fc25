"""Alembic-style schema migrations applied by :func:`supportdesk.core.db.ensure_schema`."""
