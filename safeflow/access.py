"""
Access Gate -- Ordered Guard Chain for Protected Resources.

Decides whether an actor may reach a resource.  The decision is a small
finite-state machine expressed as an ordered tuple of guard functions.
Each guard either returns ``None`` ("continue") or a terminal
``AccessDecision``; the first terminal decision wins and the remaining
guards are not consulted.

**Guard order:**

    auth known -> authenticated -> platform-owner bypass -> tenant loaded
    -> subscription active -> module enabled -> role allowed -> Allowed

A redirect is suppressed when the requested resource already *is* the
redirect target (login, payment or dashboard), which prevents redirect
loops.  Decisions are computed fresh per request and never cached.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from safeflow.models import ModuleKey, Role

logger = logging.getLogger(__name__)


class GateState(str, enum.Enum):
    """State of the guard chain when it produced its decision."""

    LOADING = "LOADING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    PLATFORM_OWNER_BYPASS = "PLATFORM_OWNER_BYPASS"
    COMPANY_LOADING = "COMPANY_LOADING"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    MODULE_DISABLED = "MODULE_DISABLED"
    ROLE_DENIED = "ROLE_DENIED"
    ALLOWED = "ALLOWED"


class DecisionKind(str, enum.Enum):
    """Terminal outcome handed back to the routing layer."""

    ALLOW = "ALLOW"
    PENDING = "PENDING"
    REDIRECT_TO_LOGIN = "REDIRECT_TO_LOGIN"
    REDIRECT_TO_PAYMENT = "REDIRECT_TO_PAYMENT"
    REDIRECT_TO_DASHBOARD = "REDIRECT_TO_DASHBOARD"


class GatePaths(BaseModel):
    """Fallback locations used by the redirecting guards."""

    model_config = ConfigDict(frozen=True)

    login: str = "/login"
    signup: str = "/register"
    payment: str = "/payment"
    dashboard: str = "/dashboard"


class Actor(BaseModel):
    """The requesting user as known to the session layer.

    ``authenticated`` is ``None`` while the session check is in flight.
    """

    model_config = ConfigDict(frozen=True)

    authenticated: Optional[bool] = None
    role: Optional[Role] = None
    user_id: str = ""


class TenantContext(BaseModel):
    """The tenant state the gate needs, taken from one config snapshot."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    subscription_active: bool = Field(
        ...,
        description="False when the company is unpaid or deactivated.",
    )
    enabled_modules: frozenset[ModuleKey] = frozenset()


class Resource(BaseModel):
    """A protected route and what it requires."""

    model_config = ConfigDict(frozen=True)

    path: str
    required_module: Optional[ModuleKey] = None
    required_roles: frozenset[Role] = frozenset()


class AccessDecision(BaseModel):
    """Outcome of ``evaluate()``."""

    model_config = ConfigDict(frozen=True)

    kind: DecisionKind
    state: GateState
    redirect_to: Optional[str] = None
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.kind == DecisionKind.ALLOW


class GateRequest(BaseModel):
    """Everything a guard may look at."""

    model_config = ConfigDict(frozen=True)

    actor: Actor
    tenant: Optional[TenantContext] = None
    resource: Resource
    paths: GatePaths = Field(default_factory=GatePaths)


Guard = Callable[[GateRequest], Optional[AccessDecision]]


def _allow(state: GateState, reason: str = "") -> AccessDecision:
    return AccessDecision(kind=DecisionKind.ALLOW, state=state, reason=reason)


def _redirect(
    kind: DecisionKind,
    state: GateState,
    target: str,
    request: GateRequest,
    reason: str,
) -> AccessDecision:
    # Already at the fallback target: render it instead of looping.
    if request.resource.path == target:
        return _allow(state, reason)
    return AccessDecision(kind=kind, state=state, redirect_to=target, reason=reason)


# ---------------------------------------------------------------------------
# Guards, in evaluation order
# ---------------------------------------------------------------------------

def guard_auth_known(request: GateRequest) -> Optional[AccessDecision]:
    if request.actor.authenticated is None:
        return AccessDecision(
            kind=DecisionKind.PENDING,
            state=GateState.LOADING,
            reason="authentication status not yet known",
        )
    return None


def guard_authenticated(request: GateRequest) -> Optional[AccessDecision]:
    if request.actor.authenticated:
        return None
    paths = request.paths
    if request.resource.path in (paths.login, paths.signup):
        return _allow(GateState.UNAUTHENTICATED, "public authentication page")
    return _redirect(
        DecisionKind.REDIRECT_TO_LOGIN,
        GateState.UNAUTHENTICATED,
        paths.login,
        request,
        "not authenticated",
    )


def guard_platform_owner(request: GateRequest) -> Optional[AccessDecision]:
    if request.actor.role == Role.PLATFORM_OWNER:
        return _allow(GateState.PLATFORM_OWNER_BYPASS, "platform owner")
    return None


def guard_tenant_loaded(request: GateRequest) -> Optional[AccessDecision]:
    if request.tenant is None:
        return AccessDecision(
            kind=DecisionKind.PENDING,
            state=GateState.COMPANY_LOADING,
            reason="tenant context not yet loaded",
        )
    return None


def guard_subscription(request: GateRequest) -> Optional[AccessDecision]:
    if request.tenant.subscription_active:
        return None
    return _redirect(
        DecisionKind.REDIRECT_TO_PAYMENT,
        GateState.SUBSCRIPTION_INACTIVE,
        request.paths.payment,
        request,
        "subscription inactive",
    )


def guard_module_enabled(request: GateRequest) -> Optional[AccessDecision]:
    module = request.resource.required_module
    if module is None or module in request.tenant.enabled_modules:
        return None
    return _redirect(
        DecisionKind.REDIRECT_TO_DASHBOARD,
        GateState.MODULE_DISABLED,
        request.paths.dashboard,
        request,
        f"module '{module.value}' disabled for tenant",
    )


def guard_role_allowed(request: GateRequest) -> Optional[AccessDecision]:
    required = request.resource.required_roles
    if not required or request.actor.role in required:
        return None
    role = request.actor.role.value if request.actor.role else "none"
    return _redirect(
        DecisionKind.REDIRECT_TO_DASHBOARD,
        GateState.ROLE_DENIED,
        request.paths.dashboard,
        request,
        f"role '{role}' not permitted",
    )


GUARD_CHAIN: tuple[Guard, ...] = (
    guard_auth_known,
    guard_authenticated,
    guard_platform_owner,
    guard_tenant_loaded,
    guard_subscription,
    guard_module_enabled,
    guard_role_allowed,
)


def evaluate(
    actor: Actor,
    tenant: Optional[TenantContext],
    resource: Resource,
    paths: Optional[GatePaths] = None,
    guards: tuple[Guard, ...] = GUARD_CHAIN,
) -> AccessDecision:
    """Run the guard chain and return the first terminal decision.

    Args:
        actor: The requesting user.
        tenant: The tenant context, or ``None`` while it is loading.
        resource: The requested resource.
        paths: Fallback locations; defaults to ``GatePaths()``.
        guards: The chain to run, in order.

    Returns:
        The ``AccessDecision``.  ``ALLOWED`` when every guard continues.
    """
    request = GateRequest(
        actor=actor,
        tenant=tenant,
        resource=resource,
        paths=paths or GatePaths(),
    )
    for guard in guards:
        decision = guard(request)
        if decision is not None:
            if decision.kind not in (DecisionKind.ALLOW, DecisionKind.PENDING):
                logger.debug(
                    "Access denied path=%s state=%s reason=%s",
                    resource.path, decision.state.value, decision.reason,
                )
            return decision
    return _allow(GateState.ALLOWED)
