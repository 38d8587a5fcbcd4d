"""CRM record API abstract base class -- the interface every CRM backend implements.

The reconciliation core needs exactly four operations per child-record
entity (get, create, update, delete) plus an availability check. Error
reporting is by exception: a backend raises ``CRMAPIError`` when the CRM
answers with an error indicator and returns an empty list when a query
simply matches nothing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class RecordAPI(ABC):
    """Abstract interface for CRM child-record operations.

    Methods:
        is_initialised: Whether the CRM connection is usable.
        get: Records of an entity matching all filter items.
        create: Create a record (payload without ``id``), return it.
        update: Update a record (payload with ``id``), return it.
        delete: Delete a record by ID.
    """

    @abstractmethod
    def is_initialised(self) -> bool:
        """Return True if the CRM connection is available."""
        ...

    @abstractmethod
    async def get(self, entity: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Return records matching the filter; empty list when none match."""
        ...

    @abstractmethod
    async def create(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return it as stored by the CRM."""
        ...

    @abstractmethod
    async def update(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Update the record identified by ``payload['id']`` and return it."""
        ...

    @abstractmethod
    async def delete(self, entity: str, record_id: int) -> bool:
        """Delete a record, returning True on success."""
        ...

    async def get_by_id(self, entity: str, record_id: int) -> dict[str, Any] | None:
        """Fetch a single record by ID, or None if it does not exist."""
        records = await self.get(entity, {"id": int(record_id)})
        return records[0] if records else None
