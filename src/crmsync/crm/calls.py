"""Timeout- and retry-wrapped access to a RecordAPI.

Every CRM call made by the reconciliation core goes through CRMCaller:

- the connection is checked first (``CRMNotInitialisedError``)
- each attempt runs under ``asyncio.wait_for`` with the configured timeout;
  exceeding it raises ``CRMTimeoutError``
- transient failures are retried with tenacity (exponential backoff,
  bounded attempts), then re-raised for the caller to abandon the row
- a timed-out create is never retried: the CRM may have committed it, and a
  second attempt would duplicate the record
- API errors (``CRMAPIError``) are never retried
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.crmsync.config import Settings
from src.crmsync.core.exceptions import (
    CRMNotInitialisedError,
    CRMTimeoutError,
    CRMTransientError,
)
from src.crmsync.core.monitoring import track_crm_call
from src.crmsync.crm.adapter import RecordAPI

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CRMCaller:
    """Wraps a RecordAPI with timeouts, retries and metrics.

    Args:
        api: The CRM backend.
        timeout: Seconds allowed per call attempt.
        max_attempts: Attempts for transient failures (1 disables retry).
        min_wait: Minimum backoff between attempts, in seconds.
        max_wait: Maximum backoff between attempts, in seconds.
    """

    def __init__(
        self,
        api: RecordAPI,
        timeout: float = 10.0,
        max_attempts: int = 3,
        min_wait: float = 1.0,
        max_wait: float = 10.0,
    ) -> None:
        self._api = api
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._min_wait = min_wait
        self._max_wait = max_wait

    @classmethod
    def from_settings(cls, api: RecordAPI, settings: Settings) -> CRMCaller:
        return cls(
            api,
            timeout=settings.CRM_CALL_TIMEOUT_SECONDS,
            max_attempts=settings.CRM_MAX_ATTEMPTS,
            min_wait=settings.CRM_RETRY_MIN_WAIT,
            max_wait=settings.CRM_RETRY_MAX_WAIT,
        )

    @property
    def api(self) -> RecordAPI:
        return self._api

    def is_initialised(self) -> bool:
        return self._api.is_initialised()

    async def get(self, entity: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        return await self._call("get", entity, lambda: self._api.get(entity, filters))

    async def get_by_id(self, entity: str, record_id: int) -> dict[str, Any] | None:
        return await self._call("get", entity, lambda: self._api.get_by_id(entity, record_id))

    async def create(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._call(
            "create", entity, lambda: self._api.create(entity, payload), idempotent=False
        )

    async def update(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._call("update", entity, lambda: self._api.update(entity, payload))

    async def delete(self, entity: str, record_id: int) -> bool:
        return await self._call("delete", entity, lambda: self._api.delete(entity, record_id))

    async def _call(
        self,
        operation: str,
        entity: str,
        factory: Callable[[], Awaitable[T]],
        idempotent: bool = True,
    ) -> T:
        if not self._api.is_initialised():
            raise CRMNotInitialisedError(f"CRM unavailable for {operation} on {entity}")

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=self._min_wait, max=self._max_wait),
            retry=retry_if_exception(lambda exc: self._should_retry(exc, idempotent)),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "crm.call_retry",
                        operation=operation,
                        entity=entity,
                        attempt=attempt.retry_state.attempt_number,
                    )
                async with track_crm_call(operation, entity):
                    try:
                        return await asyncio.wait_for(factory(), timeout=self._timeout)
                    except asyncio.TimeoutError as exc:
                        raise CRMTimeoutError(
                            f"{operation} on {entity} exceeded {self._timeout}s"
                        ) from exc

        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _should_retry(exc: BaseException, idempotent: bool) -> bool:
        if not isinstance(exc, CRMTransientError):
            return False
        return idempotent or not isinstance(exc, CRMTimeoutError)
