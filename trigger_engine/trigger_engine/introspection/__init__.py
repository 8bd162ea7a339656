"""Live PostgreSQL catalog introspection."""

from trigger_engine.introspection.catalog import (
    DEFAULT_EXCLUDED_TABLES,
    ColumnInfo,
    DatabaseIntrospector,
    TableInfo,
    TableTriggers,
)

__all__ = [
    "DEFAULT_EXCLUDED_TABLES",
    "ColumnInfo",
    "DatabaseIntrospector",
    "TableInfo",
    "TableTriggers",
]
