"""Error taxonomy for the CRM call boundary.

Only calls into the CRM can fail. Codecs and the primary-flag enforcer are
pure and degrade to empty values instead of raising.
"""

from __future__ import annotations

from typing import Any


class CRMError(Exception):
    """Base class for failures reported by, or on the way to, the CRM."""


class CRMAPIError(CRMError):
    """The CRM answered with an error indicator.

    Distinct from an empty result: "no records" is a valid answer and is
    returned as an empty list, never raised.
    """

    def __init__(self, message: str, *, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class CRMTransientError(CRMError):
    """A failure worth retrying (timeouts, dropped connections)."""


class CRMTimeoutError(CRMTransientError):
    """A CRM call exceeded its configured timeout."""


class CRMNotInitialisedError(CRMError):
    """The CRM connection is unavailable; no calls can be made."""


class CRMPayloadError(CRMError):
    """A Content row could not be turned into a CRM payload (e.g. missing file)."""
