"""CRM side: the record API interface, its in-memory backend and the caller."""

from __future__ import annotations

from src.crmsync.crm.adapter import RecordAPI
from src.crmsync.crm.calls import CRMCaller
from src.crmsync.crm.memory import InMemoryRecordAPI

__all__ = ["CRMCaller", "InMemoryRecordAPI", "RecordAPI"]
