"""
Workflow Engine -- the function-call boundary for callers.

Ties the rule components to a ``ConfigStore``.  The rule components are
pure; the engine's only job is to hand each of them the right tenant
configuration.

A request that needs several answers should call ``begin()`` once and ask
the returned ``EvaluationContext``: every answer then comes from the same
configuration epoch, even if an administrator publishes a new one while
the request is being handled.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from safeflow import access, approvals, escalation, rbac, sla, transitions
from safeflow.config import ConfigStore, ModuleConfig, TenantSnapshot
from safeflow.models import ModuleKey, Role, Severity, WorkflowStep


class EvaluationContext:
    """Rule evaluation pinned to one tenant configuration snapshot."""

    def __init__(self, snapshot: TenantSnapshot) -> None:
        self._snapshot = snapshot

    @property
    def tenant_id(self) -> str:
        return self._snapshot.tenant_id

    @property
    def epoch(self) -> int:
        return self._snapshot.epoch

    def module_config(self, module: ModuleKey | str) -> ModuleConfig:
        """A private copy of *module*'s config at this context's epoch."""
        return self._snapshot.module(module)

    def is_legal_transition(self, module: ModuleKey | str, from_status: str, to_status: str) -> bool:
        return transitions.is_legal_transition(module, from_status, to_status)

    def can_perform(self, module: ModuleKey | str, action: str, role: Role | str) -> bool:
        """Permission check; always ``False`` for a module the tenant disabled."""
        try:
            config = self._snapshot.module(module)
        except ValueError:
            return False
        if not config.enabled:
            return False
        return rbac.can_perform(module, action, role, config)

    def permitted_actions(self, module: ModuleKey | str, status: str, role: Role | str) -> list[str]:
        try:
            config = self._snapshot.module(module)
        except ValueError:
            return []
        return rbac.permitted_actions(module, status, role, config)

    def resolve_escalation(self, module: ModuleKey | str, severity: Severity | str) -> list[Role]:
        try:
            matrix = self._snapshot.module(module).severity_escalation
        except ValueError:
            matrix = None
        return escalation.resolve_escalation(module, severity, matrix)

    def approval_flow(self, module: ModuleKey | str, high_risk: bool = False) -> tuple[WorkflowStep, ...]:
        return approvals.select_approval_flow(self._snapshot.module(module), high_risk)

    def tenant_context(self, subscription_active: bool) -> access.TenantContext:
        return access.TenantContext(
            tenant_id=self._snapshot.tenant_id,
            subscription_active=subscription_active,
            enabled_modules=self._snapshot.enabled_modules,
        )

    def evaluate(
        self,
        actor: access.Actor,
        resource: access.Resource,
        subscription_active: bool,
        paths: Optional[access.GatePaths] = None,
    ) -> access.AccessDecision:
        return access.evaluate(actor, self.tenant_context(subscription_active), resource, paths)


class WorkflowEngine:
    """Entry point used by the entity-management and UI layers."""

    def __init__(self, store: Optional[ConfigStore] = None) -> None:
        self.store = store or ConfigStore()

    def begin(self, tenant_id: str) -> EvaluationContext:
        """Pin the tenant's current configuration for one request."""
        return EvaluationContext(self.store.snapshot(tenant_id))

    # -- single-shot operations --

    def is_legal_transition(self, module: ModuleKey | str, from_status: str, to_status: str) -> bool:
        return transitions.is_legal_transition(module, from_status, to_status)

    def can_perform(self, tenant_id: str, module: ModuleKey | str, action: str, role: Role | str) -> bool:
        return self.begin(tenant_id).can_perform(module, action, role)

    def resolve_escalation(self, tenant_id: str, module: ModuleKey | str, severity: Severity | str) -> list[Role]:
        return self.begin(tenant_id).resolve_escalation(module, severity)

    def overdue(self, assigned_at: datetime, time_limit_hours: float, now: datetime) -> tuple[bool, float]:
        return sla.overdue(assigned_at, time_limit_hours, now)

    def evaluate(
        self,
        actor: access.Actor,
        tenant: Optional[access.TenantContext],
        resource: access.Resource,
        paths: Optional[access.GatePaths] = None,
    ) -> access.AccessDecision:
        return access.evaluate(actor, tenant, resource, paths)

    def resolve(self, tenant_id: str, module: ModuleKey | str) -> ModuleConfig:
        return self.store.resolve(tenant_id, module)

    def reset(self, tenant_id: str, module: ModuleKey | str) -> ModuleConfig:
        return self.store.reset(tenant_id, module)

    def current_epoch(self, tenant_id: str) -> int:
        return self.store.current_epoch(tenant_id)
