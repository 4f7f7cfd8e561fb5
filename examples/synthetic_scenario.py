"""
Synthetic Scenario: Permit and Incident Workflow Walkthrough
============================================================

This script demonstrates the SafeFlow rule engine using synthetic tenants
and records.  No real company or personnel data is used.

The scenario follows a refinery tenant that has customised its permit and
incident configuration.

Steps demonstrated:
  1. Load tenant overrides from YAML
  2. Walk a hot-work permit through its status graph
  3. Check who may act at each status
  4. Resolve escalation for a critical incident
  5. Check investigation step SLAs
  6. Evaluate page access through the guard chain
  7. Publish a configuration edit while a request holds the old epoch
  8. Verify the configuration audit log

Usage:
    python -m examples.synthetic_scenario
    # or: python examples/synthetic_scenario.py
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from safeflow.access import Actor, Resource
from safeflow.approvals import pending_step
from safeflow.audit import AuditLog
from safeflow.config import ConfigStore
from safeflow.engine import WorkflowEngine
from safeflow.models import AssignedStep, ModuleKey, Role
from safeflow.sla import reminder_threshold, step_overdue
from safeflow.transitions import default_next, progress_percent

TENANT = "acme_refinery"


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def main() -> None:
    _banner("SafeFlow Synthetic Scenario: Permit and Incident Workflow")
    print("All tenants and records in this demo are synthetic.\n")

    # ------------------------------------------------------------------
    # Step 1: Load tenant overrides
    # ------------------------------------------------------------------
    _banner("Step 1: Load Tenant Overrides")

    audit_log = AuditLog()
    store = ConfigStore(audit_log=audit_log)
    tenants = store.load_yaml(Path(__file__).parent / "tenant_overrides.yaml", actor_id="admin_demo")
    engine = WorkflowEngine(store)
    print(f"Loaded tenants: {tenants}")
    snap = store.snapshot(TENANT)
    print(f"  {TENANT} epoch: {snap.epoch}")
    print(f"  Enabled modules: {sorted(m.value for m in snap.enabled_modules)}")
    print(f"  Overridden modules: {sorted(m.value for m in snap.overridden_modules)}")

    # ------------------------------------------------------------------
    # Step 2: Permit lifecycle
    # ------------------------------------------------------------------
    _banner("Step 2: Hot-Work Permit Lifecycle")

    status = "draft"
    while True:
        print(f"  {status:<10} progress={progress_percent('ptw', status)}%")
        nxt, ok = default_next("ptw", status)
        if not ok:
            break
        assert engine.is_legal_transition("ptw", status, nxt)
        status = nxt
    print(f"\nsubmitted -> active legal? {engine.is_legal_transition('ptw', 'submitted', 'active')}")

    # ------------------------------------------------------------------
    # Step 3: Who may act
    # ------------------------------------------------------------------
    _banner("Step 3: Permitted Actions by Role")

    ctx = engine.begin(TENANT)
    for permit_status in ("draft", "submitted", "active"):
        for role in (Role.WORKER, Role.HOD, Role.PLANT_HEAD):
            actions = ctx.permitted_actions("ptw", permit_status, role)
            print(f"  {permit_status:<10} {role.value:<12} {actions}")

    flow = ctx.approval_flow("ptw", high_risk=True)
    print(f"\nHigh-risk approval chain: {[s.role.value for s in flow]}")
    print(f"Next approver after step 1: {pending_step(flow, completed=[1]).role.value}")
    print(f"Contractor may extend? {ctx.can_perform('ptw', 'extend', Role.CONTRACTOR)}")

    # ------------------------------------------------------------------
    # Step 4: Escalation
    # ------------------------------------------------------------------
    _banner("Step 4: Critical Incident Escalation")

    for tenant_id in (TENANT, "globex_chemicals"):
        roles = engine.resolve_escalation(tenant_id, ModuleKey.IMS, "critical")
        print(f"  {tenant_id:<18} critical -> {[r.value for r in roles]}")

    # ------------------------------------------------------------------
    # Step 5: SLA checks
    # ------------------------------------------------------------------
    _banner("Step 5: Investigation Step SLAs")

    assigned_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    step = AssignedStep(assigned_at=assigned_at, time_limit_hours=72)
    for hours in (30, 60, 71, 73):
        now = assigned_at + timedelta(hours=hours)
        is_overdue, hours_over = step_overdue(step, now)
        level = reminder_threshold(assigned_at, step.time_limit_hours, now)
        print(f"  +{hours:>2}h reminder={level.value:<5} overdue={is_overdue} hours_over={hours_over:.2f}")

    # ------------------------------------------------------------------
    # Step 6: Access gate
    # ------------------------------------------------------------------
    _banner("Step 6: Access Gate")

    worker = Actor(authenticated=True, role=Role.WORKER, user_id="worker_demo")
    requests = [
        ("ptw page", Resource(path="/ptw", required_module=ModuleKey.PTW), True),
        ("hazop page", Resource(path="/hazop", required_module=ModuleKey.HAZOP), True),
        ("reports page", Resource(
            path="/reports",
            required_roles=frozenset({Role.COMPANY_OWNER, Role.PLANT_HEAD}),
        ), True),
        ("unpaid tenant", Resource(path="/ptw"), False),
        ("payment page", Resource(path="/payment"), False),
    ]
    for label, resource, paid in requests:
        decision = ctx.evaluate(worker, resource, subscription_active=paid)
        print(f"  {label:<14} -> {decision.kind.value:<22} state={decision.state.value}")

    # ------------------------------------------------------------------
    # Step 7: Publish while a request is in flight
    # ------------------------------------------------------------------
    _banner("Step 7: Configuration Edit During a Request")

    store.update(TENANT, "ptw", {"enabled": False}, actor_id="admin_demo")
    print(f"In-flight request epoch {ctx.epoch}: worker may submit permit? "
          f"{ctx.can_perform('ptw', 'submit', Role.WORKER)}")
    fresh = engine.begin(TENANT)
    print(f"New request epoch {fresh.epoch}: worker may submit permit? "
          f"{fresh.can_perform('ptw', 'submit', Role.WORKER)}")

    store.reset(TENANT, "ptw", actor_id="admin_demo")
    print(f"After reset (epoch {engine.current_epoch(TENANT)}): "
          f"ptw enabled={engine.resolve(TENANT, 'ptw').enabled}")

    # ------------------------------------------------------------------
    # Step 8: Audit log
    # ------------------------------------------------------------------
    _banner("Step 8: Configuration Audit Log")

    for entry in audit_log.query(TENANT):
        print(json.dumps({
            "event": entry.event_type.value,
            "module": entry.module,
            "epoch": entry.epoch,
            "actor": entry.actor_id,
        }))

    valid, broken_at = audit_log.verify_chain()
    print(f"\nFull chain verification: valid={valid}, broken_at={broken_at}")

    _banner("Scenario Complete")


if __name__ == "__main__":
    main()
