"""Common module — shared utilities for Site Manager."""

from site_manager.common.audit import AuditTrail, create_audit_entry
from site_manager.common.constants import (
    ADMIN_HR_ROLES,
    AbsenceStatus,
    AbsenceType,
    ConversationType,
    InterventionPriority,
    InterventionStatus,
    MessageStatus,
    MessageType,
    SitePriority,
    SiteStatus,
    UserRole,
)
from site_manager.common.exceptions import (
    AppException,
    BadRequestException,
    ConflictError,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
    register_exception_handlers,
)
from site_manager.common.filters import apply_filters, apply_search, apply_sorting
from site_manager.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
    pagination,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ADMIN_HR_ROLES",
    "AbsenceStatus",
    "AbsenceType",
    "ConversationType",
    "InterventionPriority",
    "InterventionStatus",
    "MessageStatus",
    "MessageType",
    "SitePriority",
    "SiteStatus",
    "UserRole",
    # Exceptions
    "AppException",
    "BadRequestException",
    "ConflictError",
    "ForbiddenException",
    "NotFoundException",
    "UnauthorizedException",
    "ValidationException",
    "register_exception_handlers",
    # Filters
    "apply_filters",
    "apply_search",
    "apply_sorting",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
    "pagination",
]
