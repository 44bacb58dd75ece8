"""
Record gateway contract.

The binding surface routes per-record traffic through any object with this
shape; :class:`pgbranch.persistence.store.RecordStore` is the SQL one.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from ..persistence.models import DATA_COL, FILE_NAME_COL, KEY_COL, VERSION_COL


@runtime_checkable
class RecordGateway(Protocol):
    def save(self, file: str, key: str, data: Optional[bytes]) -> None: ...

    def read(self, file: str, key: str) -> Optional[bytes]: ...

    def set_version(self, branch: str) -> None: ...

    def preload(self) -> None: ...


class GatewayConfig(BaseModel):
    """Snapshot of a gateway's bindings; enough to build an equivalent one."""

    model_config = ConfigDict(frozen=True)

    table: str
    file_col: str = FILE_NAME_COL
    key_col: str = KEY_COL
    val_col: str = DATA_COL
    version_col: str = VERSION_COL
    use_cache: bool = True
    use_preload: bool = True
    version: str
