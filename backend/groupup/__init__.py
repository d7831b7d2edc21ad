"""
GroupUp Backend - Application Package
=====================================

What: Location-anchored, short-lived groups. Users (signed in or anonymous)
      create a group at a point, people nearby discover and join it, and
      members share files until the group expires.
Who:  Imported by uvicorn (groupup.main:app), Alembic, and pytest.

Layering:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  <- HTTP concerns only
    ├─────────────────────────────────────┤
    │    Services (groups, buildings,     │  <- proximity rules, lookups,
    │    files, spatial store)            │     transactional sequences
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  <- SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │  Relational DB   │  DuckDB spatial  │  <- async SQLAlchemy / duckdb
    └─────────────────────────────────────┘
"""

__version__ = "0.4.0"
