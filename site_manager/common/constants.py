"""Enums and constants for Site Manager — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    administrator = "administrator"
    rh = "rh"
    purchase_department = "purchase_department"
    worker = "worker"
    workshop = "workshop"
    conductor_of_work = "conductor_of_work"
    accounting = "accounting"
    design_office = "design_office"
    project_manager = "project_manager"


# Roles that review absences and manage people
ADMIN_HR_ROLES: tuple[UserRole, ...] = (UserRole.administrator, UserRole.rh)

# Roles allowed to create and edit sites
SITE_MANAGER_ROLES: tuple[UserRole, ...] = (
    UserRole.administrator,
    UserRole.rh,
    UserRole.design_office,
)

# Roles allowed to submit intervention requests
INTERVENTION_SUBMITTER_ROLES: tuple[UserRole, ...] = (
    UserRole.worker,
    UserRole.conductor_of_work,
    UserRole.project_manager,
    UserRole.administrator,
)

# Roles that plan site tasks; deletion excludes conductors of work
TASK_MANAGER_ROLES: tuple[UserRole, ...] = (
    UserRole.administrator,
    UserRole.rh,
    UserRole.design_office,
    UserRole.conductor_of_work,
)
TASK_DELETER_ROLES: tuple[UserRole, ...] = (
    UserRole.administrator,
    UserRole.rh,
    UserRole.design_office,
)


class EmailProvider(str, enum.Enum):
    gmail = "gmail"
    outlook = "outlook"
    yahoo = "yahoo"
    other = "other"


# ── Sites ───────────────────────────────────────────────────────────

class SiteStatus(str, enum.Enum):
    planning = "planning"
    active = "active"
    on_hold = "on_hold"
    completed = "completed"
    cancelled = "cancelled"


class SitePriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# ── Tasks ─────────────────────────────────────────────────────────

class TaskStatus(str, enum.Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    on_hold = "on_hold"
    completed = "completed"
    cancelled = "cancelled"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class TaskCategory(str, enum.Enum):
    planning = "planning"
    foundation = "foundation"
    structure = "structure"
    electrical = "electrical"
    plumbing = "plumbing"
    finishing = "finishing"
    inspection = "inspection"
    other = "other"


CLOSED_TASK_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.completed, TaskStatus.cancelled)


# ── Absences ────────────────────────────────────────────────────────

class AbsenceType(str, enum.Enum):
    vacation = "vacation"
    sick_leave = "sick_leave"
    personal_leave = "personal_leave"
    emergency = "emergency"
    training = "training"
    other = "other"


class AbsenceStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    declared = "declared"


class AbsenceRequestType(str, enum.Enum):
    request = "request"
    declaration = "declaration"


# ── Interventions ───────────────────────────────────────────────────

class InterventionPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class InterventionStatus(str, enum.Enum):
    submitted = "submitted"
    transferred_to_workshop = "transferred_to_workshop"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    rejected = "rejected"


INTERVENTION_STATUS_LABELS: dict[InterventionStatus, str] = {
    InterventionStatus.submitted: "Submitted",
    InterventionStatus.transferred_to_workshop: "Transferred to Workshop",
    InterventionStatus.in_progress: "In Progress",
    InterventionStatus.completed: "Completed",
    InterventionStatus.cancelled: "Cancelled",
    InterventionStatus.rejected: "Rejected",
}

# Statuses the workshop team sees in its queue
WORKSHOP_VISIBLE_STATUSES: tuple[InterventionStatus, ...] = (
    InterventionStatus.transferred_to_workshop,
    InterventionStatus.in_progress,
    InterventionStatus.completed,
)


# ── Conversations / Messages ────────────────────────────────────────

class ConversationType(str, enum.Enum):
    direct = "direct"
    group = "group"


class MessageType(str, enum.Enum):
    text = "text"
    image = "image"
    video = "video"
    document = "document"
    audio = "audio"
    contact = "contact"
    location = "location"
    system = "system"
    email = "email"


class MessageStatus(str, enum.Enum):
    sending = "sending"
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


# ── Misc ────────────────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
