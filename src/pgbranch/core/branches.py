"""
Branch algebra: whole-branch delete, key delete, merge and replace.

Every operation is one transaction on its own connection.  Multi-statement
operations run at SERIALIZABLE isolation, so the delete-then-rename (merge)
and delete-then-copy (replace) pairs can never interleave with another
writer on the same branch; the loser gets a :class:`SerializationError`.

No retries happen here: a merge changes branch identity, so whether to
re-run it is the caller's decision.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import Table, delete, func, insert, literal, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Executable

from ..errors import (
    BranchOperationError,
    OperationCancelledError,
    RollbackError,
    SerializationError,
)
from ..events import BranchEvent, EventRegistry, registry as default_registry
from ..logging import logger
from ..persistence.models import DATA_COL, FILE_NAME_COL, KEY_COL, VERSION_COL, VERSION_LEN
from ..persistence.store import check_identifier
from .cancel import CancelToken, interrupt_dbapi

SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def is_serialization_failure(exc: BaseException) -> bool:
    """True for errors the database raises to keep transactions serializable."""
    orig = getattr(exc, "orig", None)
    if orig is None:
        return False
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in SERIALIZATION_SQLSTATES:
        return True
    # sqlite reports write contention as SQLITE_BUSY
    return "database is locked" in str(orig)


class _Tx:
    """One open transaction of one branch operation."""

    def __init__(self, conn: Connection, operation: str, branch: str, cancel: CancelToken):
        self.conn = conn
        self.operation = operation
        self.branch = branch
        self.cancel = cancel

    def check(self) -> None:
        if self.cancel.cancelled:
            raise OperationCancelledError(self.operation, self.branch, self.cancel.reason or "cancelled")

    def execute(self, stmt: Executable) -> int:
        self.check()
        logger.debug("%s(%s): %s", self.operation, self.branch, stmt)
        rows = self.conn.execute(stmt).rowcount
        self.check()
        return max(rows, 0)


class BranchEngine:
    """Transactional set operations over the ``version`` column of one records table."""

    def __init__(self, engine: Engine, table: Table, events: Optional[EventRegistry] = None):
        self.engine = engine
        self.table = table
        self.events = events if events is not None else default_registry
        self._file = table.c[FILE_NAME_COL]
        self._key = table.c[KEY_COL]
        self._ver = table.c[VERSION_COL]
        self._data = table.c[DATA_COL]

    # ---- transaction scope ---------------------------------------------
    @contextmanager
    def _transaction(
        self,
        operation: str,
        branch: str,
        cancel: Optional[CancelToken],
        *,
        serializable: bool = True,
    ) -> Iterator[_Tx]:
        """
        Open a transaction and guarantee it ends committed or rolled back.

        Commit happens only when the block finishes and the token has not
        fired.  On any other exit the transaction is rolled back explicitly
        and the error is re-raised wrapped, with the original as its cause.
        """
        cancel = cancel if cancel is not None else CancelToken()
        conn = self.engine.connect()
        try:
            if serializable:
                conn.execution_options(isolation_level="SERIALIZABLE")
            tx = _Tx(conn, operation, branch, cancel)
            with cancel.on_cancel(interrupt_dbapi(conn.connection.dbapi_connection)):
                trans = conn.begin()
                try:
                    tx.check()
                    yield tx
                    tx.check()
                    trans.commit()
                except BaseException as exc:
                    try:
                        trans.rollback()
                    except Exception as rb_exc:
                        logger.error("%s(%s): rollback failed: %s", operation, branch, rb_exc)
                        raise RollbackError(operation, branch, rb_exc, exc) from exc
                    logger.warning("%s(%s): rolled back: %s", operation, branch, exc)
                    wrapped = self._wrap(operation, branch, exc, cancel)
                    if wrapped is exc:
                        raise
                    raise wrapped from exc
        finally:
            conn.close()

    @staticmethod
    def _wrap(operation: str, branch: str, exc: BaseException, cancel: CancelToken) -> BaseException:
        if isinstance(exc, BranchOperationError):
            return exc
        if cancel.cancelled:
            return OperationCancelledError(operation, branch, cancel.reason or "cancelled", exc)
        if is_serialization_failure(exc):
            return SerializationError(operation, branch, exc)
        if isinstance(exc, Exception):
            return BranchOperationError(operation, branch, exc)
        return exc  # KeyboardInterrupt, SystemExit, ...

    # ---- single-statement operations -----------------------------------
    def delete_branch(self, branch: str, cancel: Optional[CancelToken] = None) -> int:
        """Remove every record of ``branch``. Deleting an empty branch is a no-op."""
        with self._transaction("delete_branch", branch, cancel, serializable=False) as tx:
            rows = tx.execute(delete(self.table).where(self._ver == branch))
        logger.info("deleted branch %s (%d rows)", branch, rows)
        self.events.emit(BranchEvent(kind="delete", target=branch, rows=rows))
        return rows

    def delete_branch_key(self, branch: str, key: str, cancel: Optional[CancelToken] = None) -> int:
        """Remove ``key`` from ``branch`` under every file name that has it."""
        with self._transaction("delete_branch_key", branch, cancel, serializable=False) as tx:
            rows = tx.execute(delete(self.table).where(self._ver == branch, self._key == key))
        logger.info("deleted key %s from branch %s (%d rows)", key, branch, rows)
        self.events.emit(BranchEvent(kind="delete_key", target=branch, key=key, rows=rows))
        return rows

    # ---- serializable multi-statement operations -----------------------
    def merge(self, source: str, target: str, cancel: Optional[CancelToken] = None) -> int:
        """
        Move every record of ``source`` into ``target``, replacing ``target``.

        ``target`` is emptied first so the rename cannot collide on
        (file_name, key, version); afterwards ``source`` has no records.
        Returns the number of records moved.
        """
        check_identifier("branch", target, VERSION_LEN)
        if source == target:
            logger.info("merge of branch %s into itself skipped", source)
            return 0

        with self._transaction("merge_to", target, cancel) as tx:
            dropped = tx.execute(delete(self.table).where(self._ver == target))
            moved = tx.execute(
                update(self.table).where(self._ver == source).values({VERSION_COL: target})
            )
        logger.info(
            "merged branch %s into %s (%d rows moved, %d replaced)", source, target, moved, dropped
        )
        self.events.emit(BranchEvent(kind="merge", target=target, source=source, rows=moved))
        return moved

    def replace(self, target: str, source: str, cancel: Optional[CancelToken] = None) -> int:
        """
        Make ``target`` a copy of ``source``; ``source`` is left untouched.

        Copies get fresh ``id`` and ``date_create`` values.  Returns the
        number of records copied.
        """
        check_identifier("branch", source, VERSION_LEN)
        if source == target:
            logger.info("replace of branch %s from itself skipped", target)
            return 0

        copy = insert(self.table).from_select(
            [FILE_NAME_COL, KEY_COL, DATA_COL, VERSION_COL],
            select(
                self._file,
                self._key,
                self._data,
                literal(target, self._ver.type).label(VERSION_COL),
            ).where(self._ver == source),
        )
        with self._transaction("replace_from", target, cancel) as tx:
            dropped = tx.execute(delete(self.table).where(self._ver == target))
            copied = tx.execute(copy)
        logger.info(
            "replaced branch %s from %s (%d rows copied, %d dropped)", target, source, copied, dropped
        )
        self.events.emit(BranchEvent(kind="replace", target=target, source=source, rows=copied))
        return copied

    # ---- inspection ----------------------------------------------------
    def branches(self) -> List[str]:
        """Names of all branches that currently hold at least one record."""
        with self.engine.connect() as conn:
            q = select(self._ver).distinct().order_by(self._ver)
            return [name for (name,) in conn.execute(q)]

    def count(self, branch: str) -> int:
        with self.engine.connect() as conn:
            q = select(func.count()).select_from(self.table).where(self._ver == branch)
            return conn.execute(q).scalar_one()
