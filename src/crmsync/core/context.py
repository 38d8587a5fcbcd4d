"""Request-scoped sync context passed explicitly through the call chain.

A SyncContext is built at the start of every inbound request (HTTP webhook,
CLI invocation, test) and handed to every mapper, reconciler and listener
that runs on behalf of that request. It carries:

- the origin token: which system and which identifier started the request,
  used by the reverse-edit guard to break write loops
- a per-request lookup cache that never outlives the request
- the reconciliation results and non-fatal warnings produced so far

Nothing here is process-global, so concurrent requests cannot observe each
other's origin or cached lookups.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class SourceSystem(str, Enum):
    """The two systems kept in sync."""

    CONTENT = "content"
    CRM = "crm"


@dataclass(frozen=True)
class Origin:
    """Immutable record of the entity whose edit started the current request."""

    system: SourceSystem
    entity_kind: str
    entity_id: int


class RequestCache:
    """Namespaced memo for lookups, valid for one request only."""

    _MISSING = object()

    def __init__(self) -> None:
        self._store: dict[tuple[str, Any], Any] = {}

    def get(self, namespace: str, key: Any, default: Any = None) -> Any:
        return self._store.get((namespace, key), default)

    def set(self, namespace: str, key: Any, value: Any) -> None:
        self._store[(namespace, key)] = value

    def pop(self, namespace: str, key: Any, default: Any = None) -> Any:
        return self._store.pop((namespace, key), default)

    def __contains__(self, item: tuple[str, Any]) -> bool:
        return item in self._store

    async def get_or_load(
        self,
        namespace: str,
        key: Any,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value, awaiting ``loader`` on first use."""
        value = self._store.get((namespace, key), self._MISSING)
        if value is self._MISSING:
            value = await loader()
            self._store[(namespace, key)] = value
        return value

    def clear(self) -> None:
        self._store.clear()


@dataclass
class SyncContext:
    """Everything one request needs to carry between sync components."""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    origin: Origin | None = None
    cache: RequestCache = field(default_factory=RequestCache)
    results: list[Any] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def set_origin(self, system: SourceSystem, entity_kind: str, entity_id: int) -> bool:
        """Record the originating entity unless one is already set.

        The first inbound write of a request wins: nested notifications
        triggered by that write must not overwrite it.

        Returns:
            True if this call set the origin, False if one was already set.
        """
        if self.origin is not None:
            return False
        self.origin = Origin(system=system, entity_kind=entity_kind, entity_id=int(entity_id))
        logger.debug(
            "context.origin_set",
            request_id=self.request_id,
            system=system.value,
            entity_kind=entity_kind,
            entity_id=entity_id,
        )
        return True

    def clear_origin(self) -> None:
        self.origin = None

    @contextmanager
    def originate(
        self,
        system: SourceSystem,
        entity_kind: str,
        entity_id: int,
    ) -> Iterator[Origin | None]:
        """Scope the origin to the handling of one inbound write.

        Only the call that actually set the origin clears it again, so
        reentrant handling keeps the outermost origin intact.
        """
        owner = self.set_origin(system, entity_kind, entity_id)
        try:
            yield self.origin
        finally:
            if owner:
                self.clear_origin()

    def warn(self, message: str) -> None:
        self.warnings.append(message)


# ── Current Context ─────────────────────────────────────────────────────────
# Bridges callbacks that cannot take a ctx argument (CRM notifiers fire from
# inside a CRM call) back to the SyncContext of the request that caused them.

_sync_context: contextvars.ContextVar[SyncContext | None] = contextvars.ContextVar(
    "sync_context", default=None
)


def get_current_context() -> SyncContext | None:
    """SyncContext bound for the running task, if any."""
    return _sync_context.get()


@contextmanager
def bind_context(ctx: SyncContext) -> Iterator[SyncContext]:
    """Bind ``ctx`` as the current context for the duration of the block."""
    token = _sync_context.set(ctx)
    try:
        yield ctx
    finally:
        _sync_context.reset(token)
