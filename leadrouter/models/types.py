"""
Column types shared by the models.
JSONB on PostgreSQL, plain JSON elsewhere (SQLite in development and tests).
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

JSONVariant = JSON().with_variant(JSONB(), "postgresql")
