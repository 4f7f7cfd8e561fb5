"""
Core data models for the SafeFlow workflow rule engine.

A single ``Role`` enum is shared by the transition table, the action
authorizer, the escalation resolver and the access gate, so role names are
checked once at the configuration boundary instead of being compared as
loose strings at every call site.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Actor categories recognised by the engine.

    ``PLATFORM_OWNER`` is the platform-level super-role; it bypasses tenant
    checks in the access gate.  ``INVESTIGATION_TEAM`` and ``AUDIT_TEAM``
    are assignable work groups rather than login roles, but appear in
    approval flows and escalation matrices.
    """

    WORKER = "worker"
    CONTRACTOR = "contractor"
    HOD = "hod"
    SAFETY_INCHARGE = "safety_incharge"
    PLANT_HEAD = "plant_head"
    COMPANY_OWNER = "company_owner"
    PLATFORM_OWNER = "platform_owner"
    AUDITOR = "auditor"
    ADMIN = "admin"
    INVESTIGATION_TEAM = "investigation_team"
    AUDIT_TEAM = "audit_team"


class Severity(str, enum.Enum):
    """Ordered severity scale: ``LOW < MEDIUM < HIGH < CRITICAL``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ModuleKey(str, enum.Enum):
    """Safety process areas, each with its own status graph and config."""

    PTW = "ptw"
    IMS = "ims"
    HAZOP = "hazop"
    HIRA = "hira"
    BBS = "bbs"
    AUDIT = "audit"


_SEVERITY_ORDER = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def severity_rank(severity: Severity) -> int:
    """Return the position of *severity* on the ordered scale (0 = lowest)."""
    return _SEVERITY_ORDER[severity]


def parse_role(value: object) -> Optional[Role]:
    """Coerce *value* to a ``Role``; ``None`` if it names no known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def parse_module(value: object) -> Optional[ModuleKey]:
    """Coerce *value* to a ``ModuleKey``; ``None`` if unknown."""
    if isinstance(value, ModuleKey):
        return value
    try:
        return ModuleKey(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Flow building blocks
# ---------------------------------------------------------------------------

class WorkflowStep(BaseModel):
    """One role-gated step of a sequential approval flow."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    step: int = Field(
        ...,
        ge=1,
        description="1-based position of the step within its flow.",
    )
    role: Role = Field(
        ...,
        description="Role that must act on this step.",
    )
    label: str = Field(
        default="",
        description="Human-readable step name shown in progress widgets.",
    )
    time_limit_hours: Optional[int] = Field(
        default=None,
        ge=1,
        alias="timeLimitHours",
        description="Optional SLA for the step, in whole hours.",
    )


class AnyOfFlow(BaseModel):
    """Closure-by-any-one-of flow: any listed role may complete it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    any_of: tuple[Role, ...] = Field(
        ...,
        min_length=1,
        alias="anyOf",
        description="Roles any one of which may complete the flow.",
    )
    label: str = Field(default="")


class StopWorkRole(BaseModel):
    """A role allowed to issue a stop-work order on an active permit."""

    model_config = ConfigDict(frozen=True)

    role: Role
    label: str = ""


class ActionFlow(BaseModel):
    """Tenant override for a single action or named workflow.

    ``roles`` replaces the built-in permission list for the action;
    ``steps`` replaces the built-in step list for the workflow.
    """

    model_config = ConfigDict(frozen=True)

    roles: Optional[tuple[Role, ...]] = None
    steps: Optional[tuple[WorkflowStep, ...]] = None

    @field_validator("steps")
    @classmethod
    def steps_strictly_increasing(
        cls, v: Optional[tuple[WorkflowStep, ...]]
    ) -> Optional[tuple[WorkflowStep, ...]]:
        if v is not None:
            check_step_order(v)
        return v


def check_step_order(steps: tuple[WorkflowStep, ...]) -> None:
    """Raise ``ValueError`` unless step indices are strictly increasing."""
    previous = 0
    for step in steps:
        if step.step <= previous:
            raise ValueError(
                f"step indices must be unique and strictly increasing; "
                f"got {step.step} after {previous}"
            )
        previous = step.step


# ---------------------------------------------------------------------------
# Caller-owned state
# ---------------------------------------------------------------------------

class AssignedStep(BaseModel):
    """A step currently assigned to a role, as held by the caller.

    The engine only reads this record; it is replaced by the caller when
    the owning entity transitions.
    """

    assigned_at: datetime = Field(
        ...,
        description="When the step was assigned (naive values are read as UTC).",
    )
    time_limit_hours: int = Field(
        ...,
        gt=0,
        description="Allotted window for the step, in hours.",
    )
    status: str = Field(
        default="pending",
        description="Step status; only 'pending' steps can be overdue.",
    )
