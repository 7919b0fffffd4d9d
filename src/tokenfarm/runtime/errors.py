from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]


@dataclass(eq=False)
class FarmError(Exception):
    """Canonical error type for farm operations.

    Every failure is raised before any farm state is committed, so callers can
    retry after fixing the condition named by `code` / `reason`.
    """

    code: str
    reason: str
    details: Optional[Json] = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidInputError(FarmError):
    """Zero amounts, missing allowance, rate above ceiling, clock regressions."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("invalid_input", reason, details)


class PreconditionError(FarmError):
    """Caller state does not allow the operation (nothing staked / nothing to harvest)."""

    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("precondition_failed", reason, details)


class AuthenticationError(FarmError):
    """Missing, stale or invalid request signature."""

    def __init__(self, reason: str = "invalid_signature", details: Optional[Json] = None) -> None:
        super().__init__("unauthenticated", reason, details)


class AuthorizationError(FarmError):
    def __init__(self, reason: str = "not_authorized", details: Optional[Json] = None) -> None:
        super().__init__("forbidden", reason, details)


class ReentrancyError(FarmError):
    def __init__(self, reason: str = "reentrant_call", details: Optional[Json] = None) -> None:
        super().__init__("reentrancy", reason, details)


@dataclass(eq=False)
class AssetError(Exception):
    """Raised by asset ledgers (balances, allowances, minting)."""

    code: str
    reason: str
    details: Optional[Json] = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


__all__ = [
    "AssetError",
    "AuthenticationError",
    "AuthorizationError",
    "FarmError",
    "InvalidInputError",
    "PreconditionError",
    "ReentrancyError",
]
