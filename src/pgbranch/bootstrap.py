"""
Schema assertion for the records table.
Call once per process (it is idempotent), e.g. before building a PgBranch.
"""

from __future__ import annotations

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import SchemaError
from .logging import logger
from .persistence.models import records_table


def ensure_schema(engine: Engine, table: str) -> Table:
    """
    Create the records table and its unique index if they do not exist,
    then check that an existing table carries the expected columns.

    Never migrates: a mismatching table is reported, not altered.
    """
    metadata = MetaData()
    records = records_table(table, metadata)
    try:
        metadata.create_all(engine, checkfirst=True)  # ← CREATE … IF NOT EXISTS
        existing = {
            col["name"]
            for col in inspect(engine).get_columns(records.name, schema=records.schema)
        }
    except SQLAlchemyError as exc:
        raise SchemaError(table, str(exc).strip()) from exc

    missing = sorted(set(records.c.keys()) - existing)
    if missing:
        raise SchemaError(table, f"existing table lacks columns {missing}")

    logger.debug("schema ready for %s", table)
    return records
