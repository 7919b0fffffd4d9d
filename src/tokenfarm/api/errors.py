from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from tokenfarm.runtime.errors import AssetError, FarmError

# Farm/asset error codes -> HTTP status.
_STATUS_BY_CODE: Dict[str, int] = {
    "invalid_input": 400,
    "precondition_failed": 409,
    "unauthenticated": 401,
    "forbidden": 403,
    "reentrancy": 409,
}


@dataclass(eq=False)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def conflict(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(409, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_farm_error(e: Union[FarmError, AssetError]) -> "ApiError":
        status = _STATUS_BY_CODE.get(e.code, 400)
        return ApiError(status, e.code, e.reason, dict(e.details or {}))

    def to_json(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": {"code": self.code, "message": self.message, "details": self.details},
        }
