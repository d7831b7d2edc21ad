# Services package init
"""
GroupUp Backend - Services Layer
================================

What:  Business rules between the routes (HTTP) and the two stores
       (PostgreSQL via SQLAlchemy, building footprints via DuckDB).

Service Inventory:
    - geo:                 haversine distance, rounding, bbox helpers, share codes
    - SpatialStore:        DuckDB connection owner; contains / nearest queries
    - BuildingService:     nearest-building lookup and spatial diagnostics
    - GroupService:        create, discover, join, extend, archive
    - FileService:         on-disk storage of group files
    - GroupFileService:    upload and listing rules for group files

Services never build HTTP responses; failures are raised as GroupUpError
subclasses and mapped to status codes in main.py.
"""
