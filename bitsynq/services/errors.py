"""
bitsynq.services.errors — Service-layer exceptions
===================================================

Every failure a caller can act on maps to one of these.  An HTTP layer
(out of scope here) would translate them 1:1 to 400 / 403 / 404 / 409 /
502-style responses.
"""

from __future__ import annotations

from typing import Any


class BitsynqError(Exception):
    """Base class for all service errors."""

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BitsynqError):
    """Request shape or range is invalid."""


class NotFoundError(BitsynqError):
    """Referenced project, meeting, contribution or log does not exist."""


class PermissionDeniedError(BitsynqError):
    """Actor is not a member, or not an admin where one is required."""


class ConflictError(BitsynqError):
    """Operation clashes with current state (e.g. meeting already processed)."""


class SettlementError(BitsynqError):
    """On-chain settlement is unavailable, impossible, or failed.

    ``missing_users`` lists recipients without a usable wallet address.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        missing_users: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.missing_users = missing_users or []
