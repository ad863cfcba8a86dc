"""Common module — shared utilities for HR desk."""

from hrdesk.common.constants import (
    CATEGORY_BALANCE_FIELDS,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    WEEKDAY_KEYS,
    BalanceField,
    ChangeOperation,
    HistoryAction,
    LeaveCategory,
    RequestStatus,
    balance_field_for,
)
from hrdesk.common.exceptions import (
    AlreadyResetError,
    AppException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceError,
    NotFoundException,
    OrgChartCycleError,
    TransientIOError,
    ValidationException,
    io_errors_as_transient,
    register_exception_handlers,
)
from hrdesk.common.pagination import PaginatedResponse, PaginationMeta, paginate

__all__ = [
    # Constants / Enums
    "BalanceField",
    "ChangeOperation",
    "HistoryAction",
    "LeaveCategory",
    "RequestStatus",
    "CATEGORY_BALANCE_FIELDS",
    "WEEKDAY_KEYS",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "balance_field_for",
    # Exceptions
    "AlreadyResetError",
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InsufficientBalanceError",
    "NotFoundException",
    "OrgChartCycleError",
    "TransientIOError",
    "ValidationException",
    "io_errors_as_transient",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "paginate",
]
