"""
Single-table schema: every record of every branch lives here.

The table name is supplied by the caller (optionally ``schema.table``), so
the table is built on demand instead of being declared once at import time.
"""

from __future__ import annotations

from typing import Optional, Tuple

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    func,
)

FILE_NAME_COL = "file_name"
KEY_COL = "key"
VERSION_COL = "version"
DATA_COL = "data"

FILE_NAME_LEN = 40
KEY_LEN = 40
VERSION_LEN = 500

# append-dominated table, the unique index is never updated in place
UNIQUE_FILLFACTOR = 100


def split_table_name(table: str) -> Tuple[Optional[str], str]:
    """``"cache.records"`` ➜ ``("cache", "records")``; bare names get no schema."""
    schema, dot, name = table.rpartition(".")
    if not dot:
        return None, table
    if not schema or not name:
        raise ValueError(f"invalid table name {table!r}")
    return schema, name


def constraint_prefix(table: str) -> str:
    """Identifier stem for index/constraint names: the table name with dots stripped."""
    return table.replace(".", "")


def records_table(table: str, metadata: Optional[MetaData] = None) -> Table:
    """Build the ``Table`` for a (possibly schema-qualified) records table."""
    schema, name = split_table_name(table)
    prefix = constraint_prefix(table)
    metadata = metadata if metadata is not None else MetaData()

    return Table(
        name,
        metadata,
        Column("id", Integer, autoincrement=True),
        Column(FILE_NAME_COL, String(FILE_NAME_LEN), nullable=False),
        Column(KEY_COL, String(KEY_LEN), nullable=False),
        Column(VERSION_COL, String(VERSION_LEN), nullable=False),
        Column(DATA_COL, LargeBinary, nullable=True),
        Column("date_create", DateTime(timezone=False), nullable=False, server_default=func.now()),
        PrimaryKeyConstraint("id", name=f"{prefix}_pkey"),
        Index(
            f"{prefix}_uxk",
            FILE_NAME_COL,
            KEY_COL,
            VERSION_COL,
            unique=True,
            postgresql_with={"fillfactor": UNIQUE_FILLFACTOR},
        ),
        schema=schema,
    )
