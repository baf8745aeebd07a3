"""Structured outcomes for service operations.

Validation, precondition, permission and not-found failures are reported as a
failed :class:`ServiceResult` rather than raised, so background sweeps and the
HTTP layer can treat them uniformly.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar


class ErrorCode(str, Enum):
    """Standard error codes for service operations."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    INTERNAL_ERROR = "INTERNAL_ERROR"


TData = TypeVar("TData")


@dataclass
class ServiceResult(Generic[TData]):
    is_success: bool
    data: TData | None = None
    error_code: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def success(cls, data: TData | None = None, message: str | None = None) -> "ServiceResult[TData]":
        return cls(is_success=True, data=data, message=message)

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> "ServiceResult[TData]":
        return cls(is_success=False, error_code=code, message=message)

    @classmethod
    def not_found(cls, message: str) -> "ServiceResult[TData]":
        return cls.failure(ErrorCode.NOT_FOUND, message)

    @classmethod
    def invalid_state(cls, message: str) -> "ServiceResult[TData]":
        return cls.failure(ErrorCode.INVALID_STATE, message)

    @classmethod
    def validation_error(cls, message: str) -> "ServiceResult[TData]":
        return cls.failure(ErrorCode.VALIDATION_ERROR, message)

    @classmethod
    def forbidden(cls, message: str) -> "ServiceResult[TData]":
        return cls.failure(ErrorCode.INSUFFICIENT_PERMISSIONS, message)

    @classmethod
    def internal_error(cls, operation: str) -> "ServiceResult[TData]":
        # Driver detail stays in the log; callers log with logger.exception first.
        return cls.failure(
            ErrorCode.INTERNAL_ERROR, f"Lỗi hệ thống khi {operation}. Vui lòng thử lại sau."
        )


@dataclass
class BatchResult:
    """Outcome of an operation applied to many items independently."""

    total_requested: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: list[str] = field(default_factory=list)
    successful_ids: list[uuid.UUID] = field(default_factory=list)

    def record_success(self, item_id: uuid.UUID) -> None:
        self.success_count += 1
        self.successful_ids.append(item_id)

    def record_failure(self, message: str) -> None:
        self.failure_count += 1
        self.errors.append(message)


__all__ = ["BatchResult", "ErrorCode", "ServiceResult"]
