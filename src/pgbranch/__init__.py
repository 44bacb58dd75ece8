"""
Public surface for pgbranch.
Importing this module does **not** touch the database; build a
``PgBranch(engine, branch, table)`` during application start-up.
"""

from .bootstrap import ensure_schema
from .core.branches import BranchEngine
from .core.cancel import CancelToken
from .core.gateway import GatewayConfig, RecordGateway
from .errors import (
    BranchOperationError,
    ConfigError,
    GatewayError,
    InvalidIdentifierError,
    OperationCancelledError,
    PgBranchError,
    RecordNotFoundError,
    RollbackError,
    SchemaError,
    SerializationError,
)
from .events import BranchEvent, on
from .persistence.store import RecordStore
from .runtime import PgBranch

__all__ = [
    "PgBranch",
    "BranchEngine",
    "RecordStore",
    "RecordGateway",
    "GatewayConfig",
    "CancelToken",
    "BranchEvent",
    "on",
    "ensure_schema",
    "PgBranchError",
    "ConfigError",
    "SchemaError",
    "BranchOperationError",
    "SerializationError",
    "OperationCancelledError",
    "RollbackError",
    "GatewayError",
    "RecordNotFoundError",
    "InvalidIdentifierError",
]
