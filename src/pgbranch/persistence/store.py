"""
SQL record gateway around the records table.
Per-record save/read for one bound branch, with an optional per-branch cache.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from sqlalchemy import Table, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..core.gateway import GatewayConfig
from ..errors import GatewayError, InvalidIdentifierError, RecordNotFoundError
from ..logging import logger
from .models import FILE_NAME_LEN, KEY_LEN, VERSION_LEN, records_table

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def check_identifier(field: str, value: str, limit: int) -> str:
    if not isinstance(value, str) or not value or len(value) > limit:
        raise InvalidIdentifierError(field, value if isinstance(value, str) else repr(value), limit)
    return value


class RecordStore:
    """Thin data-access layer: one records table, one bound branch."""

    def __init__(
        self,
        engine: Engine,
        table: Table,
        version: str,
        *,
        use_cache: bool = True,
        use_preload: Optional[bool] = None,
        file_col: str = "file_name",
        key_col: str = "key",
        val_col: str = "data",
        version_col: str = "version",
    ):
        self.engine = engine
        self.table = table
        self.use_cache = use_cache
        self.use_preload = use_cache if use_preload is None else use_preload
        try:
            self._file = table.c[file_col]
            self._key = table.c[key_col]
            self._val = table.c[val_col]
            self._ver = table.c[version_col]
        except KeyError as exc:
            raise GatewayError(f"table {table.fullname!r} has no column {exc.args[0]!r}") from exc
        self.version = check_identifier("branch", version, VERSION_LEN)
        self._cache: Dict[Tuple[str, str], Optional[bytes]] = {}

    @classmethod
    def from_config(cls, engine: Engine, config: GatewayConfig) -> "RecordStore":
        return cls(
            engine,
            records_table(config.table),
            config.version,
            use_cache=config.use_cache,
            use_preload=config.use_preload,
            file_col=config.file_col,
            key_col=config.key_col,
            val_col=config.val_col,
            version_col=config.version_col,
        )

    def config(self) -> GatewayConfig:
        fullname = self.table.fullname  # "schema.name" when qualified
        return GatewayConfig(
            table=fullname,
            file_col=self._file.name,
            key_col=self._key.name,
            val_col=self._val.name,
            version_col=self._ver.name,
            use_cache=self.use_cache,
            use_preload=self.use_preload,
            version=self.version,
        )

    def _new_session(self) -> Session:
        return Session(bind=self.engine)

    # ---- writes ---------------------------------------------------------
    def save(self, file: str, key: str, data: Optional[bytes]) -> None:
        """Insert or overwrite (file, key) in the bound branch."""
        check_identifier("file", file, FILE_NAME_LEN)
        check_identifier("key", key, KEY_LEN)
        payload = bytes(data) if data is not None else None
        values = {self._file.name: file, self._key.name: key, self._ver.name: self.version, self._val.name: payload}

        with self._new_session() as s, s.begin():
            make_insert = _UPSERT_DIALECTS.get(self.engine.dialect.name)
            if make_insert is not None:
                stmt = make_insert(self.table).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[self._file, self._key, self._ver],
                    set_={self._val.name: stmt.excluded[self._val.name]},
                )
                s.execute(stmt)
            else:
                res = s.execute(
                    update(self.table)
                    .where(self._file == file, self._key == key, self._ver == self.version)
                    .values({self._val.name: payload})
                )
                if res.rowcount == 0:
                    s.execute(insert(self.table).values(**values))

        if self.use_cache:
            self._cache[(file, key)] = payload

    # ---- reads ---------------------------------------------------------
    def read(self, file: str, key: str) -> Optional[bytes]:
        """Return the payload stored for (file, key) in the bound branch."""
        if self.use_cache and (file, key) in self._cache:
            return self._cache[(file, key)]

        with self._new_session() as s:
            q = select(self._val).where(
                self._file == file, self._key == key, self._ver == self.version
            )
            row = s.execute(q).first()
        if row is None:
            raise RecordNotFoundError(file, key, self.version)

        data = bytes(row[0]) if row[0] is not None else None
        if self.use_cache:
            self._cache[(file, key)] = data
        return data

    def preload(self) -> None:
        """Fill the cache with the whole bound branch in one query."""
        if not (self.use_cache and self.use_preload):
            return
        with self._new_session() as s:
            q = select(self._file, self._key, self._val).where(self._ver == self.version)
            rows = s.execute(q).all()
        self._cache = {
            (f, k): (bytes(d) if d is not None else None) for f, k, d in rows
        }
        logger.debug("preloaded %d records of branch %s", len(rows), self.version)

    # ---- binding -------------------------------------------------------
    def set_version(self, branch: str) -> None:
        self.version = check_identifier("branch", branch, VERSION_LEN)
        self._cache = {}

    def invalidate(self) -> None:
        """Forget cached payloads; the next read goes to the database."""
        self._cache = {}
