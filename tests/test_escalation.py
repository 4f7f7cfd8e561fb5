"""
Tests for safeflow.escalation -- Severity Escalation Resolver.

Covers: default IMS matrix, nearest-lower fallback, never-empty results,
tenant matrices with string keys, unknown severities, and assignee helpers.
"""

from __future__ import annotations

import pytest

from safeflow.config import DEFAULT_MODULE_CONFIGS
from safeflow.models import ModuleKey, Role, Severity
from safeflow.escalation import (
    is_eligible_assignee,
    recommended_assignee,
    resolve_escalation,
)


IMS_MATRIX = DEFAULT_MODULE_CONFIGS[ModuleKey.IMS].severity_escalation


# ---------------------------------------------------------------------------
# 1. Default matrix
# ---------------------------------------------------------------------------

class TestDefaultMatrix:
    def test_critical_incident_includes_company_owner(self):
        assert resolve_escalation("ims", "critical", IMS_MATRIX) == [
            "safety_incharge",
            "plant_head",
            "company_owner",
        ]

    @pytest.mark.parametrize("severity", [Severity.LOW, Severity.MEDIUM, Severity.HIGH])
    def test_company_owner_only_at_critical(self, severity):
        assert Role.COMPANY_OWNER not in resolve_escalation("ims", severity, IMS_MATRIX)

    def test_no_matrix_uses_module_default(self):
        assert resolve_escalation("ims", Severity.CRITICAL) == resolve_escalation(
            "ims", Severity.CRITICAL, IMS_MATRIX
        )

    def test_ptw_high_risk_routes_to_plant_head_first(self):
        assert recommended_assignee("ptw", "high") == Role.PLANT_HEAD


# ---------------------------------------------------------------------------
# 2. Fallback
# ---------------------------------------------------------------------------

class TestFallback:
    def test_missing_severity_uses_nearest_lower(self):
        matrix = {
            Severity.LOW: [Role.HOD],
            Severity.HIGH: [Role.PLANT_HEAD, Role.HOD],
        }
        assert resolve_escalation("ims", Severity.MEDIUM, matrix) == [Role.HOD]
        assert resolve_escalation("ims", Severity.CRITICAL, matrix) == [
            Role.PLANT_HEAD,
            Role.HOD,
        ]

    @pytest.mark.parametrize("severity", list(Severity))
    def test_never_empty_with_lowest_defined(self, severity):
        matrix = {Severity.LOW: [Role.SAFETY_INCHARGE]}
        assert resolve_escalation("hazop", severity, matrix) == [Role.SAFETY_INCHARGE]

    def test_string_keyed_matrix(self):
        matrix = {"low": ["hod"], "critical": ["company_owner"]}
        assert resolve_escalation("bbs", "critical", matrix) == ["company_owner"]
        assert resolve_escalation("bbs", "high", matrix) == ["hod"]

    def test_empty_matrix_falls_back_to_default(self):
        assert resolve_escalation("ims", "low", {}) == [Role.SAFETY_INCHARGE]

    def test_unknown_severity_treated_as_lowest(self):
        assert resolve_escalation("ims", "catastrophic", IMS_MATRIX) == [Role.SAFETY_INCHARGE]

    def test_returns_a_fresh_list(self):
        first = resolve_escalation("ims", "high", IMS_MATRIX)
        first.append(Role.WORKER)
        assert Role.WORKER not in resolve_escalation("ims", "high", IMS_MATRIX)


# ---------------------------------------------------------------------------
# 3. Assignee helpers
# ---------------------------------------------------------------------------

class TestAssignees:
    def test_recommended_assignee_is_first_entry(self):
        assert recommended_assignee("ims", "critical", IMS_MATRIX) == Role.SAFETY_INCHARGE

    def test_eligible_assignee(self):
        assert is_eligible_assignee("ims", "critical", Role.COMPANY_OWNER, IMS_MATRIX) is True
        assert is_eligible_assignee("ims", "low", Role.COMPANY_OWNER, IMS_MATRIX) is False
        assert is_eligible_assignee("ims", "low", "ghost", IMS_MATRIX) is False
