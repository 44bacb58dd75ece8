"""
pgbranch.runtime  ──  the binding surface callers hold.

Usage pattern in user code
--------------------------
    from pgbranch import PgBranch

    store = PgBranch(engine, branch="main", table="cache.records")
    store.save("users.json", "page-1", payload)

    store.set_version("dev")
    store.replace_from("main")   # dev is now a copy of main
    store.merge_to("main")       # dev's records replace main; dev is empty

Per-record calls go to the record gateway bound to the current branch;
branch calls go to the :class:`BranchEngine`.  The engine handle is shared
and never closed here.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.engine import Engine

from .bootstrap import ensure_schema
from .config import Settings
from .core.branches import BranchEngine
from .core.cancel import CancelToken
from .core.gateway import GatewayConfig, RecordGateway
from .events import EventRegistry
from .logging import logger
from .persistence.models import records_table
from .persistence.store import RecordStore


class PgBranch:
    """One caller's view of the records table: a current branch plus branch operations."""

    def __init__(
        self,
        engine: Engine,
        branch: str,
        table: str,
        use_cache: bool = True,
        *,
        gateway: Optional[RecordGateway] = None,
        events: Optional[EventRegistry] = None,
        ensure: bool = True,
    ):
        self.engine = engine
        self.table = table
        self.use_cache = use_cache
        self.records = ensure_schema(engine, table) if ensure else records_table(table)
        if gateway is None:
            gateway = RecordStore(engine, self.records, branch, use_cache=use_cache)
        else:
            gateway.set_version(branch)
        self.gateway: RecordGateway = gateway
        self.algebra = BranchEngine(engine, self.records, events)
        self.branch = branch

    @classmethod
    def from_settings(cls, settings: Settings, engine: Optional[Engine] = None) -> "PgBranch":
        engine = engine if engine is not None else settings.create_engine()
        return cls(engine, settings.branch, settings.table, settings.use_cache)

    def bind(self, branch: str) -> "PgBranch":
        """A second binding on the same engine and table, without re-asserting the schema."""
        return PgBranch(
            self.engine,
            branch,
            self.table,
            self.use_cache,
            events=self.algebra.events,
            ensure=False,
        )

    # ---- record pass-through -------------------------------------------
    def save(self, file: str, key: str, data: Optional[bytes]) -> None:
        self.gateway.save(file, key, data)

    def read(self, file: str, key: str) -> Optional[bytes]:
        return self.gateway.read(file, key)

    def set_version(self, branch: str) -> None:
        """Rebind to ``branch``; touches no rows."""
        self.gateway.set_version(branch)  # may reject the name; keep the old binding then
        self.branch = branch

    def preload(self) -> None:
        """Warm the gateway cache for the current branch in one round-trip."""
        self.gateway.preload()

    def config(self) -> GatewayConfig:
        """The gateway's own snapshot; built from this binding if it has none."""
        gateway_config = getattr(self.gateway, "config", None)
        if gateway_config is not None:
            return gateway_config()
        return GatewayConfig(
            table=self.table,
            use_cache=self.use_cache,
            use_preload=self.use_cache,
            version=self.branch,
        )

    # ---- branch operations ---------------------------------------------
    def delete_branch(self, branch: str, cancel: Optional[CancelToken] = None) -> int:
        try:
            return self.algebra.delete_branch(branch, cancel)
        finally:
            if branch == self.branch:
                self._invalidate()

    def delete_branch_key(self, branch: str, key: str, cancel: Optional[CancelToken] = None) -> int:
        try:
            return self.algebra.delete_branch_key(branch, key, cancel)
        finally:
            if branch == self.branch:
                self._invalidate()

    def merge_to(
        self,
        branch: str,
        cancel: Optional[CancelToken] = None,
        *,
        rebind: bool = False,
    ) -> int:
        """
        Move the current branch's records into ``branch``, replacing it.

        The binding stays on the (now empty) current branch unless
        ``rebind`` is set, in which case it follows the records.
        """
        try:
            rows = self.algebra.merge(self.branch, branch, cancel)
        finally:
            self._invalidate()
        if rebind:
            self.set_version(branch)
        return rows

    def replace_from(self, branch: str, cancel: Optional[CancelToken] = None) -> int:
        """Discard the current branch and refill it with a copy of ``branch``."""
        try:
            return self.algebra.replace(self.branch, branch, cancel)
        finally:
            self._invalidate()

    def branches(self) -> List[str]:
        return self.algebra.branches()

    def _invalidate(self) -> None:
        invalidate = getattr(self.gateway, "invalidate", None)
        if invalidate is not None:
            invalidate()
            logger.debug("gateway cache dropped for branch %s", self.branch)
