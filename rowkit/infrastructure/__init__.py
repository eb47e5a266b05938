"""
Infrastructure package for rowkit.

Holds the pool capability, its psycopg_pool, python-oracledb and DB-API
implementations, and the factory that builds a validated pool from a
`DatabaseConfig`.
"""

from rowkit.infrastructure.db_factory import build_dsn, create_pool, open_pool
from rowkit.infrastructure.pool import (
    ConnectionPool,
    DbapiPool,
    OraclePool,
    PoolLimits,
    PoolStats,
    PsycopgPool,
)

__all__ = [
    "ConnectionPool",
    "DbapiPool",
    "OraclePool",
    "PoolLimits",
    "PoolStats",
    "PsycopgPool",
    "build_dsn",
    "create_pool",
    "open_pool",
]
