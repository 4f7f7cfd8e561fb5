"""
Severity Escalation Resolver.

Maps a record's severity to the ordered list of roles who should own it.
The first role is the recommended assignee; the whole list is the set of
eligible assignees offered to the caller.  The same resolver routes IMS
investigation assignment and PTW high-risk approval.

**Fallback:**  When the matrix has no entry for the requested severity, the
entry of the nearest *lower* defined severity is used.  The lowest severity
is always defined (enforced when configuration is validated), so the
result is never empty.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

from safeflow.config import DEFAULT_MODULE_CONFIGS
from safeflow.models import ModuleKey, Role, Severity, parse_module, parse_role, severity_rank

EscalationMatrix = Mapping[Severity, Sequence[Role]]

_ASCENDING = sorted(Severity, key=severity_rank)


def _coerce_severity(severity: Severity | str) -> Severity:
    # Unknown labels are treated as the lowest severity.
    try:
        return Severity(severity)
    except ValueError:
        return _ASCENDING[0]


def _default_matrix(module: ModuleKey | str) -> EscalationMatrix:
    key = parse_module(module) or ModuleKey.IMS
    return DEFAULT_MODULE_CONFIGS[key].severity_escalation


def resolve_escalation(
    module: ModuleKey | str,
    severity: Severity | str,
    matrix: Optional[EscalationMatrix] = None,
) -> list[Role]:
    """Return the ordered roles to escalate to for *severity*.

    Args:
        module: Module the record belongs to; selects the default matrix.
        severity: The record's severity.
        matrix: The tenant's effective matrix.  When ``None`` or empty the
            module's built-in matrix is used.

    Returns:
        A non-empty list of roles; the first is the recommended assignee.
    """
    level = _coerce_severity(severity)
    for source in (matrix, _default_matrix(module)):
        if not source:
            continue
        for candidate in reversed(_ASCENDING[: severity_rank(level) + 1]):
            roles = source.get(candidate)
            if roles:
                return list(roles)
    # Both matrices lack every severity at or below *level*.
    return list(_default_matrix(module)[Severity.LOW])


def recommended_assignee(
    module: ModuleKey | str,
    severity: Severity | str,
    matrix: Optional[EscalationMatrix] = None,
) -> Role:
    """Return the primary owner for *severity*."""
    return resolve_escalation(module, severity, matrix)[0]


def is_eligible_assignee(
    module: ModuleKey | str,
    severity: Severity | str,
    role: Role | str,
    matrix: Optional[EscalationMatrix] = None,
) -> bool:
    """Whether *role* appears in the escalation list for *severity*."""
    actor = parse_role(role)
    return actor is not None and actor in resolve_escalation(module, severity, matrix)
