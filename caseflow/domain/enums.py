from __future__ import annotations

from enum import Enum


class CaseStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    DOCS_REQUIRED = "DOCS_REQUIRED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class CasePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class CaseFlag(str, Enum):
    VIP_CLIENT = "VIP_CLIENT"
    ESCALATED = "ESCALATED"
    SLA_WARNING = "SLA_WARNING"
    SLA_BREACHED = "SLA_BREACHED"
    COMPLIANCE_RISK = "COMPLIANCE_RISK"


class UserType(str, Enum):
    STAFF = "STAFF"
    CLIENT = "CLIENT"


class StaffRole(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    MASTER_ADMIN = "MASTER_ADMIN"


class VaultSessionState(str, Enum):
    UNLOCKED = "UNLOCKED"
    EXPIRED = "EXPIRED"
    LOCKED = "LOCKED"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    ASSIGNMENT = "ASSIGNMENT"
    TRANSFER = "TRANSFER"
    UNLOCK = "UNLOCK"
    LOCK = "LOCK"
    ACCESS = "ACCESS"
    DOWNLOAD = "DOWNLOAD"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


# Entity types recorded on audit entries.
ENTITY_CASE = "case"
ENTITY_VAULT = "vault"
