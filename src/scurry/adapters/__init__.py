"""Database adapters: dialect adapter, engine pools, query executor.

The package namespace exports the pure dialect layer only.  Import the I/O
pieces from their modules:

    from scurry.adapters.executor import QueryExecutor
    from scurry.adapters.pool import PoolManager
"""

from scurry.adapters.dialect import (
    DEFAULT_PORTS,
    Dialect,
    build_delete,
    build_insert,
    build_update,
    get_dialect,
    placeholder,
    quote_identifier,
    validate_identifier,
)

__all__ = [
    "DEFAULT_PORTS",
    "Dialect",
    "build_delete",
    "build_insert",
    "build_update",
    "get_dialect",
    "placeholder",
    "quote_identifier",
    "validate_identifier",
]
