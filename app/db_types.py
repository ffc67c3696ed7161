"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money is stored as NUMERIC(12, 2) and surfaces as Decimal
Money = Numeric(12, 2, asdecimal=True)
