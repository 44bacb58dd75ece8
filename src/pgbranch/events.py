"""
pgbranch.events  ──  post-commit hooks for branch operations

    from pgbranch import on

    @on.merge()
    def drop_proxy_cache(event): ...

Handlers run only after the transaction committed; rolled-back or
cancelled operations emit nothing.  A handler that raises propagates to
the caller of the branch operation, whose data change is already durable.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict

EventKind = Literal["delete", "delete_key", "merge", "replace"]
KINDS = get_args(EventKind)
ANY = "*"


class BranchEvent(BaseModel):
    """What a committed branch operation did."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    target: str  # the branch whose contents changed
    source: Optional[str] = None  # merge / replace origin
    key: Optional[str] = None  # delete_key only
    rows: int = 0

    @property
    def touched(self) -> set[str]:
        """Branches whose contents differ after the operation."""
        out = {self.target}
        if self.kind == "merge" and self.source is not None:
            out.add(self.source)
        return out


Handler = Callable[[BranchEvent], None]


class EventRegistry:
    """Central registry for branch event handlers"""

    def __init__(self):
        # Maps event kind (or ANY) -> handlers, in registration order
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def register(self, kind: str, handler: Handler) -> None:
        if kind != ANY and kind not in KINDS:
            raise ValueError(f"unknown branch event {kind!r}")
        if handler not in self._handlers[kind]:
            self._handlers[kind].append(handler)

    def unregister(self, kind: str, handler: Handler) -> None:
        if handler in self._handlers.get(kind, []):
            self._handlers[kind].remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def emit(self, event: BranchEvent) -> None:
        """Call every handler for ``event.kind``, then the catch-all ones"""
        for handler in [*self._handlers.get(event.kind, []), *self._handlers.get(ANY, [])]:
            handler(event)


# Global registry instance
registry = EventRegistry()


class OnDecorator:
    """Namespace for event decorators"""

    @staticmethod
    def _for(kind: str) -> Callable[[Handler], Handler]:
        def decorator(func: Handler) -> Handler:
            registry.register(kind, func)
            return func

        return decorator

    def delete(self) -> Callable[[Handler], Handler]:
        return self._for("delete")

    def delete_key(self) -> Callable[[Handler], Handler]:
        return self._for("delete_key")

    def merge(self) -> Callable[[Handler], Handler]:
        return self._for("merge")

    def replace(self) -> Callable[[Handler], Handler]:
        return self._for("replace")

    def any(self) -> Callable[[Handler], Handler]:
        return self._for(ANY)


# Export the decorator interface
on = OnDecorator()
