from __future__ import annotations

from utilitysign.schema.descriptor import ColumnDef, ColumnType, SchemaDescriptor


_ID = ColumnDef("id", ColumnType.BIGINT, nullable=False, autoincrement=True)
_SITE_ID = ColumnDef("site_id", ColumnType.BIGINT, nullable=False, default="1")
_CREATED_AT = ColumnDef("created_at", ColumnType.DATETIME, default="CURRENT_TIMESTAMP")


# Authentication attempts (success and failure), append-only.
AUTH_LOG = SchemaDescriptor(
    table_name="auth_log",
    columns=(
        _ID,
        ColumnDef("timestamp", ColumnType.DATETIME, nullable=False),
        ColumnDef("event", ColumnType.STRING, nullable=False, length=50),
        ColumnDef("event_type", ColumnType.STRING, nullable=False, length=50),
        ColumnDef("method", ColumnType.STRING, length=50),
        ColumnDef("reason", ColumnType.STRING, length=100),
        ColumnDef("data", ColumnType.JSON),
        _SITE_ID,
        ColumnDef("ip_address", ColumnType.STRING, length=45),
        ColumnDef("user_agent", ColumnType.TEXT),
        _CREATED_AT,
    ),
    primary_key="id",
    secondary_keys=(
        ("event",),
        ("event_type",),
        ("timestamp",),
        ("site_id",),
        ("method",),
        ("ip_address",),
        ("site_id", "timestamp"),
    ),
)

# Key/value cache rows; one live row per (site_id, cache_key).
CACHE = SchemaDescriptor(
    table_name="cache",
    columns=(
        _ID,
        ColumnDef("cache_key", ColumnType.STRING, nullable=False, length=255),
        ColumnDef("data", ColumnType.BLOB),
        ColumnDef("expires_at", ColumnType.DATETIME, nullable=False),
        _CREATED_AT,
        _SITE_ID,
    ),
    primary_key="id",
    unique_keys=(("site_id", "cache_key"),),
    secondary_keys=(
        ("expires_at",),
        ("site_id",),
    ),
)

# Application errors and exceptions, append-only.
ERROR_LOG = SchemaDescriptor(
    table_name="error_log",
    columns=(
        _ID,
        ColumnDef("type", ColumnType.STRING, nullable=False, length=100),
        ColumnDef("message", ColumnType.TEXT, nullable=False),
        ColumnDef("file", ColumnType.STRING, length=255),
        ColumnDef("line", ColumnType.INTEGER),
        ColumnDef("severity", ColumnType.STRING, nullable=False, length=20),
        ColumnDef("correlation_id", ColumnType.STRING, length=50),
        ColumnDef("user_id", ColumnType.BIGINT),
        ColumnDef("ip_address", ColumnType.STRING, length=45),
        ColumnDef("user_agent", ColumnType.TEXT),
        ColumnDef("request_uri", ColumnType.STRING, length=500),
        ColumnDef("request_method", ColumnType.STRING, length=10),
        ColumnDef("stack_trace", ColumnType.TEXT),
        _SITE_ID,
        ColumnDef("timestamp", ColumnType.DATETIME, nullable=False),
        _CREATED_AT,
    ),
    primary_key="id",
    secondary_keys=(
        ("type",),
        ("severity",),
        ("correlation_id",),
        ("user_id",),
        ("site_id",),
        ("timestamp",),
        ("ip_address",),
        ("site_id", "timestamp"),
    ),
)

# Registration order is dependency order for the runner.
ALL_DESCRIPTORS = (AUTH_LOG, CACHE, ERROR_LOG)
