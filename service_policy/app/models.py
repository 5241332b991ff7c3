"""
Domain records returned by the backing stores.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional

from .plans.entitlements import Plan, ResourceType


class UserRole(str, Enum):
    """Global role of a principal."""
    SUPER = "SUPER"
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    SUPPORT = "SUPPORT"


@dataclass(frozen=True)
class Principal:
    """The authenticated actor."""
    user_id: str
    role: UserRole = UserRole.MEMBER
    plan: Optional[Plan] = None
    owner_id: Optional[str] = None


def is_super(principal: Optional[Principal]) -> bool:
    """The single SUPER predicate used wherever the bypass applies."""
    return principal is not None and principal.role == UserRole.SUPER


@dataclass(frozen=True)
class Role:
    """Named bundle of permission codes."""
    role_id: str
    name: str
    permissions: FrozenSet[str] = frozenset()
    description: Optional[str] = None


@dataclass(frozen=True)
class RoleAssignment:
    """Binding of a principal to a role; ``workspace_id=None`` is global scope."""
    user_id: str
    role_id: str
    workspace_id: Optional[str] = None


@dataclass(frozen=True)
class Workspace:
    workspace_id: str
    owner_id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Repository:
    repository_id: str
    owner_id: str


@dataclass(frozen=True)
class Scan:
    scan_id: str
    workspace_id: str


@dataclass(frozen=True)
class Schedule:
    schedule_id: str
    workspace_id: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageRecord:
    """One append-only usage event."""
    user_id: str
    resource_type: ResourceType
    action: str
    count: int = 1
    timestamp: datetime = field(default_factory=utcnow)
