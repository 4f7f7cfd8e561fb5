"""
Tests for safeflow.access -- Access Gate.

Covers: pending states, login redirect, platform-owner bypass, subscription,
module and role guards, redirect-loop suppression, and guard order.
"""

import logging

import pytest

from safeflow.access import (
    GUARD_CHAIN,
    Actor,
    DecisionKind,
    GatePaths,
    GateState,
    Resource,
    TenantContext,
    evaluate,
    guard_authenticated,
    guard_platform_owner,
)
from safeflow.models import ModuleKey, Role


def _actor(role=Role.WORKER, authenticated=True):
    return Actor(authenticated=authenticated, role=role, user_id="u1")


def _tenant(subscription_active=True, enabled=frozenset(ModuleKey)):
    return TenantContext(
        tenant_id="acme",
        subscription_active=subscription_active,
        enabled_modules=enabled,
    )


OWNERS_ONLY = Resource(
    path="/reports",
    required_roles=frozenset({Role.COMPANY_OWNER, Role.PLANT_HEAD}),
)


# ---------------------------------------------------------------------------
# 1. Pending states
# ---------------------------------------------------------------------------

class TestPending:
    def test_unknown_auth_is_loading(self):
        decision = evaluate(_actor(authenticated=None), _tenant(), OWNERS_ONLY)
        assert decision.kind == DecisionKind.PENDING
        assert decision.state == GateState.LOADING
        assert decision.allowed is False

    def test_missing_tenant_is_company_loading(self):
        decision = evaluate(_actor(), None, Resource(path="/ptw"))
        assert decision.kind == DecisionKind.PENDING
        assert decision.state == GateState.COMPANY_LOADING


# ---------------------------------------------------------------------------
# 2. Authentication
# ---------------------------------------------------------------------------

class TestAuthentication:
    def test_unauthenticated_redirects_to_login(self):
        decision = evaluate(_actor(authenticated=False), _tenant(), Resource(path="/ptw"))
        assert decision.kind == DecisionKind.REDIRECT_TO_LOGIN
        assert decision.redirect_to == "/login"

    @pytest.mark.parametrize("path", ["/login", "/register"])
    def test_auth_pages_are_reachable_unauthenticated(self, path):
        decision = evaluate(_actor(authenticated=False), None, Resource(path=path))
        assert decision.allowed is True
        assert decision.state == GateState.UNAUTHENTICATED

    def test_custom_signup_path(self):
        paths = GatePaths(signup="/join")
        decision = evaluate(_actor(authenticated=False), None, Resource(path="/join"), paths)
        assert decision.allowed is True
        assert evaluate(_actor(authenticated=False), None, Resource(path="/register"),
                        paths).kind == DecisionKind.REDIRECT_TO_LOGIN

    def test_gate_paths_fields_do_not_shadow_model_attributes(self):
        from pydantic import BaseModel

        assert not set(GatePaths.model_fields) & set(dir(BaseModel))

    def test_custom_login_path(self):
        paths = GatePaths(login="/signin")
        decision = evaluate(_actor(authenticated=False), _tenant(), Resource(path="/ptw"), paths)
        assert decision.redirect_to == "/signin"


# ---------------------------------------------------------------------------
# 3. Platform owner
# ---------------------------------------------------------------------------

class TestPlatformOwner:
    def test_bypasses_tenant_checks(self):
        decision = evaluate(
            _actor(role=Role.PLATFORM_OWNER),
            _tenant(subscription_active=False, enabled=frozenset()),
            Resource(path="/hazop", required_module=ModuleKey.HAZOP,
                     required_roles=frozenset({Role.COMPANY_OWNER})),
        )
        assert decision.allowed is True
        assert decision.state == GateState.PLATFORM_OWNER_BYPASS

    def test_bypasses_tenant_loading(self):
        decision = evaluate(_actor(role=Role.PLATFORM_OWNER), None, Resource(path="/admin"))
        assert decision.state == GateState.PLATFORM_OWNER_BYPASS


# ---------------------------------------------------------------------------
# 4. Subscription
# ---------------------------------------------------------------------------

class TestSubscription:
    def test_inactive_subscription_redirects_to_payment(self):
        decision = evaluate(_actor(), _tenant(subscription_active=False), Resource(path="/ptw"))
        assert decision.kind == DecisionKind.REDIRECT_TO_PAYMENT
        assert decision.redirect_to == "/payment"
        assert decision.state == GateState.SUBSCRIPTION_INACTIVE

    def test_payment_page_reachable_without_loop(self):
        decision = evaluate(_actor(), _tenant(subscription_active=False), Resource(path="/payment"))
        assert decision.kind == DecisionKind.ALLOW
        assert decision.redirect_to is None


# ---------------------------------------------------------------------------
# 5. Module and role guards
# ---------------------------------------------------------------------------

class TestModuleAndRole:
    def test_disabled_module_redirects_to_dashboard(self):
        tenant = _tenant(enabled=frozenset({ModuleKey.PTW}))
        decision = evaluate(_actor(), tenant,
                            Resource(path="/hazop", required_module=ModuleKey.HAZOP))
        assert decision.kind == DecisionKind.REDIRECT_TO_DASHBOARD
        assert decision.state == GateState.MODULE_DISABLED
        assert "hazop" in decision.reason

    def test_enabled_module_allowed(self):
        decision = evaluate(_actor(), _tenant(),
                            Resource(path="/ptw", required_module=ModuleKey.PTW))
        assert decision.allowed is True
        assert decision.state == GateState.ALLOWED

    def test_worker_denied_owners_only_resource(self):
        decision = evaluate(_actor(), _tenant(), OWNERS_ONLY)
        assert decision.kind == DecisionKind.REDIRECT_TO_DASHBOARD
        assert decision.state == GateState.ROLE_DENIED
        assert decision.redirect_to == "/dashboard"

    def test_role_denied_on_dashboard_is_allowed(self):
        dashboard = Resource(path="/dashboard", required_roles=OWNERS_ONLY.required_roles)
        decision = evaluate(_actor(), _tenant(), dashboard)
        assert decision.kind == DecisionKind.ALLOW

    def test_plant_head_allowed(self):
        assert evaluate(_actor(role=Role.PLANT_HEAD), _tenant(), OWNERS_ONLY).allowed is True

    def test_denial_is_logged_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="safeflow.access"):
            evaluate(_actor(), _tenant(), OWNERS_ONLY)
        assert any("ROLE_DENIED" in r.getMessage() for r in caplog.records)


# ---------------------------------------------------------------------------
# 6. Guard order
# ---------------------------------------------------------------------------

class TestGuardOrder:
    def test_subscription_checked_before_module(self):
        tenant = _tenant(subscription_active=False, enabled=frozenset())
        decision = evaluate(_actor(), tenant,
                            Resource(path="/ptw", required_module=ModuleKey.PTW))
        assert decision.state == GateState.SUBSCRIPTION_INACTIVE

    def test_module_checked_before_role(self):
        tenant = _tenant(enabled=frozenset())
        decision = evaluate(_actor(), tenant, Resource(
            path="/ptw",
            required_module=ModuleKey.PTW,
            required_roles=frozenset({Role.PLANT_HEAD}),
        ))
        assert decision.state == GateState.MODULE_DISABLED

    def test_chain_order(self):
        assert GUARD_CHAIN.index(guard_authenticated) < GUARD_CHAIN.index(guard_platform_owner)

    def test_custom_chain(self):
        decision = evaluate(_actor(authenticated=False), None, Resource(path="/x"),
                            guards=(guard_platform_owner,))
        assert decision.state == GateState.ALLOWED
