"""
Approval Flow Progression.

An approval flow is either a sequence of role-gated steps, walked in step
order, or an any-of set where a single member closes it.  The caller keeps
the record of which steps are complete; these helpers only answer "who is
up next" and "is it done".
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Union

from safeflow.config import ModuleConfig
from safeflow.models import AnyOfFlow, ModuleKey, Role, WorkflowStep, parse_module, parse_role

ApprovalFlow = Union[Sequence[WorkflowStep], AnyOfFlow]


_DEFAULT_WORKFLOW_STEPS: dict[ModuleKey, dict[str, tuple[WorkflowStep, ...]]] = {
    ModuleKey.PTW: {
        "approval": (
            WorkflowStep(step=1, role=Role.SAFETY_INCHARGE, label="Safety Approval"),
            WorkflowStep(step=2, role=Role.PLANT_HEAD, label="Plant Head Approval"),
        ),
    },
    ModuleKey.IMS: {
        "investigation": (
            WorkflowStep(step=1, role=Role.SAFETY_INCHARGE, label="Investigation Assignment",
                         time_limit_hours=24),
            WorkflowStep(step=2, role=Role.INVESTIGATION_TEAM, label="Investigation Execution",
                         time_limit_hours=72),
        ),
    },
    ModuleKey.AUDIT: {
        "completion": (
            WorkflowStep(step=1, role=Role.AUDITOR, label="Audit Completion",
                         time_limit_hours=168),
            WorkflowStep(step=2, role=Role.SAFETY_INCHARGE, label="Audit Review",
                         time_limit_hours=72),
        ),
    },
}


def select_approval_flow(config: ModuleConfig, high_risk: bool = False) -> tuple[WorkflowStep, ...]:
    """Pick the approval chain for a record.

    High-risk records use ``highRiskApprovalFlow`` when the module defines
    one, and fall back to the normal chain otherwise.
    """
    if high_risk and config.high_risk_approval_flow:
        return config.high_risk_approval_flow
    return config.approval_flow


def workflow_steps(
    module: ModuleKey | str,
    workflow: str,
    config: Optional[ModuleConfig] = None,
) -> tuple[WorkflowStep, ...]:
    """Return the steps of a named workflow (e.g. IMS ``'investigation'``).

    Tenant-defined ``flows.<workflow>.steps`` win; otherwise the built-in
    steps apply.  Unknown workflows have no steps.
    """
    if config is not None:
        flow = config.flows.get(workflow)
        if flow is not None and flow.steps is not None:
            return flow.steps
    key = parse_module(module)
    if key is None:
        return ()
    return _DEFAULT_WORKFLOW_STEPS.get(key, {}).get(workflow, ())


def pending_step(flow: ApprovalFlow, completed: Iterable[int] = ()) -> Optional[WorkflowStep]:
    """Return the first step not yet completed, or ``None``.

    Any-of flows have no ordered steps and always return ``None``.
    """
    if isinstance(flow, AnyOfFlow):
        return None
    done = set(completed)
    for step in flow:
        if step.step not in done:
            return step
    return None


def can_act_on_flow(
    flow: ApprovalFlow,
    role: Role | str,
    completed: Iterable[int] = (),
) -> bool:
    """Whether *role* may act on the flow right now.

    For an any-of flow, membership is enough.  For a sequential flow only
    the role of the pending step may act.
    """
    actor = parse_role(role)
    if actor is None:
        return False
    if isinstance(flow, AnyOfFlow):
        return actor in flow.any_of
    step = pending_step(flow, completed)
    return step is not None and step.role == actor


def is_flow_complete(
    flow: ApprovalFlow,
    completed: Iterable[int] = (),
    closed_by: Optional[Role | str] = None,
) -> bool:
    """Whether the flow is finished.

    A sequential flow is complete once every step index is in *completed*.
    An any-of flow is complete once *closed_by* names one of its roles.
    """
    if isinstance(flow, AnyOfFlow):
        actor = parse_role(closed_by) if closed_by is not None else None
        return actor is not None and actor in flow.any_of
    return pending_step(flow, completed) is None
