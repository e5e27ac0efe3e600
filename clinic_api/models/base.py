"""Shared metadata and column types for all tables."""

from sqlalchemy import JSON, MetaData
from sqlalchemy.dialects.postgresql import JSONB

# Metadata for all tables
metadata = MetaData()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")
