"""Reverse-edit guard: stops a propagated write from echoing back.

When a Content save is being pushed to the CRM, the CRM writes it causes
come back as CRM notifications within the same request. Those must not be
written back into the Content record whose save is in flight. The guard
reads the origin token on the SyncContext and answers "skip" for exactly
that record.

Overrides let a caller force propagation for a record the guard would
otherwise suppress (e.g. a CRM-side cascade that deliberately changes the
originating record's related data).
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from src.crmsync.core.context import SourceSystem, SyncContext
from src.crmsync.records.schemas import SyncEvent

logger = structlog.get_logger(__name__)

Override = Callable[[SyncContext, int, SyncEvent], bool]


class ReverseEditGuard:
    """Decides whether a CRM -> Content propagation is a reverse edit."""

    def __init__(self) -> None:
        self._overrides: list[Override] = []

    def add_override(self, override: Override) -> bool:
        """Register a callable returning True to force propagation."""
        if override in self._overrides:
            return False
        self._overrides.append(override)
        return True

    def remove_override(self, override: Override) -> bool:
        if override not in self._overrides:
            return False
        self._overrides.remove(override)
        return True

    def is_reverse_edit(self, ctx: SyncContext, content_record_id: int) -> bool:
        """True if ``content_record_id`` is the Content record whose save is in flight."""
        origin = ctx.origin
        return (
            origin is not None
            and origin.system == SourceSystem.CONTENT
            and origin.entity_id == int(content_record_id)
        )

    def should_skip(self, ctx: SyncContext, content_record_id: int, event: SyncEvent) -> bool:
        """Whether to suppress writing ``event`` into ``content_record_id``."""
        if not self.is_reverse_edit(ctx, content_record_id):
            return False
        for override in self._overrides:
            if override(ctx, content_record_id, event):
                logger.info(
                    "guard.override_forced",
                    request_id=ctx.request_id,
                    content_record_id=content_record_id,
                    entity_kind=event.entity_kind.value if event.entity_kind else None,
                )
                return False
        logger.debug(
            "guard.reverse_edit_skipped",
            request_id=ctx.request_id,
            content_record_id=content_record_id,
            operation=event.operation.value,
        )
        return True

    def is_echo_save(self, ctx: SyncContext) -> bool:
        """True if a Content save happens while a CRM-originated write is in flight.

        Such saves are the Content side of a CRM -> Content propagation and
        must not be pushed back to the CRM.
        """
        return ctx.origin is not None and ctx.origin.system == SourceSystem.CRM
