"""
Tests for safeflow.transitions -- Status Transition Table.

Covers: graph structure (terminal vs. non-terminal), explicit edges only,
self-loop rejection, unknown module/status handling, canonical forward
step, progress percentages, and the raising helper.
"""

from __future__ import annotations

import pytest

from safeflow.models import ModuleKey
from safeflow.transitions import (
    TERMINAL_STATUSES,
    InvalidTransitionError,
    default_next,
    graph_for,
    is_legal_transition,
    is_terminal,
    legal_next,
    progress_percent,
    require_legal_transition,
    validate_graph,
)


# ---------------------------------------------------------------------------
# 1. Graph structure
# ---------------------------------------------------------------------------

class TestGraphStructure:
    @pytest.mark.parametrize("module", list(ModuleKey))
    def test_shipped_graphs_are_sound(self, module):
        assert validate_graph(graph_for(module)) == []

    @pytest.mark.parametrize("module", list(ModuleKey))
    def test_non_terminal_statuses_have_outgoing_edges(self, module):
        for status, targets in graph_for(module).items():
            if status in TERMINAL_STATUSES:
                assert targets == frozenset(), f"{module.value}:{status}"
            else:
                assert targets, f"{module.value}:{status} is a dead end"

    def test_validate_graph_reports_dead_end(self):
        problems = validate_graph({"draft": frozenset({"limbo"}), "limbo": frozenset()})
        assert any("limbo" in p and "no outgoing" in p for p in problems)

    def test_validate_graph_reports_dangling_target(self):
        problems = validate_graph({"draft": frozenset({"nowhere"})})
        assert any("not a declared status" in p for p in problems)

    def test_validate_graph_reports_terminal_with_edges(self):
        problems = validate_graph({
            "closed": frozenset({"open"}),
            "open": frozenset({"closed"}),
        })
        assert any("terminal status 'closed'" in p for p in problems)


# ---------------------------------------------------------------------------
# 2. Legality
# ---------------------------------------------------------------------------

class TestIsLegalTransition:
    def test_ptw_draft_to_submitted_is_legal(self):
        assert is_legal_transition("ptw", "draft", "submitted") is True

    def test_ptw_cannot_skip_approval(self):
        assert is_legal_transition("ptw", "submitted", "active") is False

    def test_ptw_stopped_can_resume(self):
        assert is_legal_transition(ModuleKey.PTW, "stopped", "active") is True

    def test_ims_pending_closure_can_reopen_investigation(self):
        assert is_legal_transition("ims", "pending_closure", "investigating") is True

    @pytest.mark.parametrize("module", list(ModuleKey))
    def test_self_loops_are_never_legal(self, module):
        for status in graph_for(module):
            assert is_legal_transition(module, status, status) is False

    @pytest.mark.parametrize("module", list(ModuleKey))
    def test_only_listed_pairs_are_legal(self, module):
        graph = graph_for(module)
        for source in graph:
            for target in graph:
                expected = target in graph[source]
                assert is_legal_transition(module, source, target) is expected

    def test_unknown_module_is_not_legal(self):
        assert is_legal_transition("payroll", "draft", "submitted") is False

    def test_unknown_status_is_not_legal(self):
        assert is_legal_transition("ptw", "archived", "closed") is False

    def test_ims_rca_statuses_are_not_in_the_graph(self):
        assert is_legal_transition("ims", "investigating", "rca_submitted") is False
        assert legal_next("ims", "actions_assigned") == frozenset()

    def test_terminal_statuses(self):
        assert is_terminal("ptw", "closed") is True
        assert is_terminal("ptw", "rejected") is True
        assert is_terminal("ptw", "stopped") is False
        assert is_terminal("ptw", "unknown") is False


class TestRequireLegalTransition:
    def test_legal_move_passes(self):
        require_legal_transition("audit", "planned", "in_progress")

    def test_illegal_move_raises_with_allowed_list(self):
        with pytest.raises(InvalidTransitionError, match="Allowed transitions"):
            require_legal_transition(ModuleKey.PTW, "draft", "approved")


# ---------------------------------------------------------------------------
# 3. Canonical forward step and progress
# ---------------------------------------------------------------------------

class TestDefaultNext:
    def test_follows_canonical_path(self):
        assert default_next("ptw", "draft") == ("submitted", True)
        assert default_next("ptw", "submitted") == ("approved", True)
        assert default_next("ptw", "active") == ("closed", True)

    def test_end_of_path_has_no_next(self):
        assert default_next("ptw", "closed") == (None, False)

    def test_off_path_single_successor(self):
        assert default_next("ptw", "expired") == ("closed", True)
        assert default_next("bbs", "reassigned") == ("approved", True)

    def test_off_path_ambiguous_successor(self):
        assert default_next("ptw", "stopped") == (None, False)

    def test_unknown_inputs(self):
        assert default_next("ptw", "nope") == (None, False)
        assert default_next("nope", "draft") == (None, False)


class TestProgressPercent:
    def test_ptw_path(self):
        assert progress_percent("ptw", "draft") == 0
        assert progress_percent("ptw", "submitted") == 25
        assert progress_percent("ptw", "approved") == 50
        assert progress_percent("ptw", "active") == 75
        assert progress_percent("ptw", "closed") == 100

    def test_off_path_values(self):
        assert progress_percent("ptw", "rejected") == 0
        assert progress_percent("ptw", "expired") == 100
        assert progress_percent("ptw", "stopped") == 100

    def test_ims_values(self):
        assert [
            progress_percent("ims", s)
            for s in ("open", "investigating", "pending_closure", "closed")
        ] == [0, 50, 75, 100]

    def test_bbs_values(self):
        assert [
            progress_percent("bbs", s)
            for s in ("open", "reassigned", "approved", "pending_closure", "closed")
        ] == [0, 25, 33, 66, 100]

    @pytest.mark.parametrize("module", [ModuleKey.HAZOP, ModuleKey.AUDIT])
    def test_study_and_audit_values(self, module):
        assert progress_percent(module, "in_progress") == 50
        assert progress_percent(module, "completed") == 75

    def test_hira_closed_stays_complete(self):
        assert progress_percent("hira", "completed") == 66
        assert progress_percent("hira", "approved") == 100
        assert progress_percent("hira", "closed") == 100

    @pytest.mark.parametrize("module", list(ModuleKey))
    def test_closed_is_complete(self, module):
        assert progress_percent(module, "closed") == 100

    def test_unknown_status_is_zero(self):
        assert progress_percent("ims", "rca_submitted") == 0
        assert progress_percent("nope", "draft") == 0
