"""
Action Authorization for SafeFlow.

Decides whether a role may invoke a workflow action on a module.

**Resolution order:**

1. If the tenant configuration defines an explicit role list for the
   action (``flows.<action>.roles``), the role must be a member.
2. Otherwise the built-in default permission table, keyed by action name,
   applies.
3. An action found in neither is denied.

Checks never raise: an unknown action, role or module resolves to
``False``.  A missing permission is a signal for the UI to hide a button,
not an error.  ``require_permission()`` is the raising variant for service
code that wants an exception.
"""

from __future__ import annotations

import logging
from typing import Optional

from safeflow.config import ModuleConfig
from safeflow.models import ModuleKey, Role, parse_module, parse_role

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Permission definitions
# ---------------------------------------------------------------------------

_ALL_SITE_ROLES = frozenset({
    Role.COMPANY_OWNER,
    Role.PLANT_HEAD,
    Role.SAFETY_INCHARGE,
    Role.HOD,
    Role.CONTRACTOR,
    Role.WORKER,
})

_MANAGEMENT = frozenset({Role.SAFETY_INCHARGE, Role.PLANT_HEAD, Role.COMPANY_OWNER})

# Maps action -> roles allowed when the tenant has no explicit list.
_DEFAULT_PERMISSIONS: dict[str, frozenset[Role]] = {
    "submit": _ALL_SITE_ROLES,
    "approve": _MANAGEMENT,
    "reject": _MANAGEMENT,
    "assign": frozenset({Role.SAFETY_INCHARGE, Role.PLANT_HEAD}),
    "close": _MANAGEMENT,
    "review": frozenset({Role.SAFETY_INCHARGE, Role.PLANT_HEAD, Role.HOD}),
    "investigate": frozenset({Role.SAFETY_INCHARGE, Role.PLANT_HEAD, Role.HOD}),
    "complete": frozenset({
        Role.SAFETY_INCHARGE,
        Role.PLANT_HEAD,
        Role.HOD,
        Role.CONTRACTOR,
        Role.WORKER,
    }),
}

# Action menu offered for each status, before permission filtering.
_STATUS_ACTIONS: dict[ModuleKey, dict[str, tuple[str, ...]]] = {
    ModuleKey.PTW: {
        "draft": ("submit", "edit", "delete"),
        "submitted": ("approve", "reject"),
        "approved": ("activate",),
        "active": ("close", "stop", "extend"),
        "stopped": ("resume", "close"),
        "expired": ("extend", "close"),
    },
    ModuleKey.IMS: {
        "open": ("assign", "edit"),
        "investigating": ("investigate", "submit_findings", "add_actions"),
        "pending_closure": ("close", "reopen"),
    },
    ModuleKey.HAZOP: {
        "planned": ("start", "edit"),
        "in_progress": ("add_session", "add_node", "complete"),
        "completed": ("close", "reopen"),
    },
    ModuleKey.HIRA: {
        "draft": ("submit", "edit"),
        "in_progress": ("complete", "edit"),
        "completed": ("approve", "reject"),
        "approved": ("close",),
    },
    ModuleKey.BBS: {
        "open": ("review", "close", "edit"),
        "approved": ("complete",),
        "pending_closure": ("close", "reject"),
    },
    ModuleKey.AUDIT: {
        "planned": ("start", "edit"),
        "in_progress": ("complete", "add_finding"),
        "completed": ("close", "add_action"),
    },
}


def default_actions() -> list[str]:
    """Return the action names covered by the built-in permission table."""
    return sorted(_DEFAULT_PERMISSIONS)


def can_perform(
    module: ModuleKey | str,
    action: str,
    role: Role | str,
    config: Optional[ModuleConfig] = None,
) -> bool:
    """Check whether *role* may perform *action* on *module*.

    Args:
        module: The module the action targets.
        action: Action name (e.g. ``'approve'``).
        role: The actor's role.
        config: The tenant's effective module configuration, if any.

    Returns:
        True if permitted, False otherwise (including every unknown input).
    """
    actor = parse_role(role)
    if actor is None or parse_module(module) is None:
        return False

    if config is not None:
        flow = config.flows.get(action)
        if flow is not None and flow.roles is not None:
            return actor in flow.roles

    return actor in _DEFAULT_PERMISSIONS.get(action, frozenset())


def require_permission(
    module: ModuleKey | str,
    action: str,
    role: Role | str,
    config: Optional[ModuleConfig] = None,
) -> None:
    """Enforce a permission check; raise if denied.

    Raises:
        PermissionError: If the role is not permitted.
    """
    if not can_perform(module, action, role, config):
        role_name = role.value if isinstance(role, Role) else role
        module_name = module.value if isinstance(module, ModuleKey) else module
        raise PermissionError(
            f"Role '{role_name}' is not permitted to perform action "
            f"'{action}' on module '{module_name}'."
        )


def get_permissions_for_role(
    role: Role | str,
    module: ModuleKey | str,
    config: Optional[ModuleConfig] = None,
) -> dict[str, bool]:
    """Return every known action for *module* mapped to whether *role* may perform it.

    Known actions are the built-in table plus any the tenant configured.
    """
    actions = set(_DEFAULT_PERMISSIONS)
    if config is not None:
        actions.update(a for a, flow in config.flows.items() if flow.roles is not None)
    return {
        action: can_perform(module, action, role, config)
        for action in sorted(actions)
    }


def available_actions(module: ModuleKey | str, status: str) -> list[str]:
    """Return the action menu offered for *status*, unfiltered by role."""
    key = parse_module(module)
    if key is None:
        return []
    return list(_STATUS_ACTIONS[key].get(status, ()))


def permitted_actions(
    module: ModuleKey | str,
    status: str,
    role: Role | str,
    config: Optional[ModuleConfig] = None,
) -> list[str]:
    """Return the actions for *status* that *role* may perform.

    Empty when the module is disabled for the tenant.
    """
    if config is not None and not config.enabled:
        return []
    allowed = [
        action
        for action in available_actions(module, status)
        if can_perform(module, action, role, config)
    ]
    logger.debug(
        "permitted_actions module=%s status=%s role=%s -> %s",
        module, status, role, allowed,
    )
    return allowed


def can_stop_work(role: Role | str, config: ModuleConfig) -> bool:
    """Whether *role* is listed in the module's stop-work roles."""
    actor = parse_role(role)
    if actor is None:
        return False
    return any(entry.role == actor for entry in config.stop_work_roles)
