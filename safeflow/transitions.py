"""
Status Transition Table.

Each module ships a fixed directed graph of legal status moves.  Legality
is a structural property of the module: tenant configuration may relabel
steps or change who approves them, but it never adds or removes edges.

**PTW graph:**

    draft -> submitted -> approved -> active -> closed
                       -> rejected            -> stopped -> active | closed
                                              -> expired -> closed

Lookups are total: an unknown module or status is simply "not legal",
never an exception.  Terminal statuses have no outgoing edges.
"""

from __future__ import annotations

from typing import Mapping, Optional

from safeflow.models import ModuleKey, parse_module


class InvalidTransitionError(Exception):
    """Raised by ``require_legal_transition`` for a move not in the graph."""


# ---------------------------------------------------------------------------
# Default graphs
# ---------------------------------------------------------------------------

TERMINAL_STATUSES = frozenset({"closed", "cancelled", "rejected"})

_GRAPHS: dict[ModuleKey, dict[str, frozenset[str]]] = {
    ModuleKey.PTW: {
        "draft": frozenset({"submitted"}),
        "submitted": frozenset({"approved", "rejected"}),
        "approved": frozenset({"active"}),
        "active": frozenset({"closed", "stopped", "expired"}),
        "stopped": frozenset({"active", "closed"}),
        "expired": frozenset({"closed"}),
        "rejected": frozenset(),
        "closed": frozenset(),
    },
    ModuleKey.IMS: {
        "open": frozenset({"investigating"}),
        "investigating": frozenset({"pending_closure"}),
        "pending_closure": frozenset({"closed", "investigating"}),
        "closed": frozenset(),
    },
    ModuleKey.HAZOP: {
        "planned": frozenset({"in_progress"}),
        "in_progress": frozenset({"completed"}),
        "completed": frozenset({"closed"}),
        "closed": frozenset(),
    },
    ModuleKey.HIRA: {
        "draft": frozenset({"in_progress"}),
        "in_progress": frozenset({"completed"}),
        "completed": frozenset({"approved", "rejected"}),
        "approved": frozenset({"closed"}),
        "rejected": frozenset(),
        "closed": frozenset(),
    },
    ModuleKey.BBS: {
        "open": frozenset({"approved", "reassigned"}),
        "approved": frozenset({"pending_closure"}),
        "pending_closure": frozenset({"closed", "approved"}),
        "reassigned": frozenset({"approved"}),
        "closed": frozenset(),
    },
    ModuleKey.AUDIT: {
        "planned": frozenset({"in_progress"}),
        "in_progress": frozenset({"completed"}),
        "completed": frozenset({"closed"}),
        "closed": frozenset(),
    },
}

# Happy path followed by default_next().
_CANONICAL_PATHS: dict[ModuleKey, tuple[str, ...]] = {
    ModuleKey.PTW: ("draft", "submitted", "approved", "active", "closed"),
    ModuleKey.IMS: ("open", "investigating", "pending_closure", "closed"),
    ModuleKey.HAZOP: ("planned", "in_progress", "completed", "closed"),
    ModuleKey.HIRA: ("draft", "in_progress", "completed", "approved", "closed"),
    ModuleKey.BBS: ("open", "approved", "pending_closure", "closed"),
    ModuleKey.AUDIT: ("planned", "in_progress", "completed", "closed"),
}

# Percent complete shown by progress indicators.  Unlisted statuses report 0.
_PROGRESS: dict[ModuleKey, dict[str, int]] = {
    ModuleKey.PTW: {
        "draft": 0,
        "submitted": 25,
        "approved": 50,
        "active": 75,
        "closed": 100,
        "stopped": 100,
        "expired": 100,
        "rejected": 0,
    },
    ModuleKey.IMS: {"open": 0, "investigating": 50, "pending_closure": 75, "closed": 100},
    ModuleKey.HAZOP: {"planned": 0, "in_progress": 50, "completed": 75, "closed": 100},
    ModuleKey.HIRA: {
        "draft": 0,
        "in_progress": 33,
        "completed": 66,
        "approved": 100,
        "closed": 100,
    },
    ModuleKey.BBS: {
        "open": 0,
        "reassigned": 25,
        "approved": 33,
        "pending_closure": 66,
        "closed": 100,
    },
    ModuleKey.AUDIT: {"planned": 0, "in_progress": 50, "completed": 75, "closed": 100},
}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def graph_for(module: ModuleKey | str) -> Mapping[str, frozenset[str]]:
    """Return the transition graph for *module* (empty if unknown)."""
    key = parse_module(module)
    if key is None:
        return {}
    return _GRAPHS[key]


def legal_next(module: ModuleKey | str, status: str) -> frozenset[str]:
    """Return every status reachable in one move from *status*."""
    return graph_for(module).get(status, frozenset())


def is_legal_transition(module: ModuleKey | str, from_status: str, to_status: str) -> bool:
    """Whether moving *from_status* -> *to_status* is an edge of the graph.

    Self-loops are not legal unless listed.  Unknown modules and statuses
    return ``False``.
    """
    return to_status in legal_next(module, from_status)


def require_legal_transition(
    module: ModuleKey | str, from_status: str, to_status: str
) -> None:
    """Raise ``InvalidTransitionError`` if the move is not in the graph."""
    if not is_legal_transition(module, from_status, to_status):
        allowed = sorted(legal_next(module, from_status))
        name = module.value if isinstance(module, ModuleKey) else module
        raise InvalidTransitionError(
            f"Cannot transition {name} from '{from_status}' to "
            f"'{to_status}'. Allowed transitions: {allowed}"
        )


def is_terminal(module: ModuleKey | str, status: str) -> bool:
    """A known status with no outgoing edges."""
    graph = graph_for(module)
    return status in graph and not graph[status]


def canonical_path(module: ModuleKey | str) -> tuple[str, ...]:
    key = parse_module(module)
    if key is None:
        return ()
    return _CANONICAL_PATHS[key]


def default_next(module: ModuleKey | str, status: str) -> tuple[Optional[str], bool]:
    """Return the canonical forward step from *status* as ``(status, ok)``.

    On the canonical path this is the next path element.  Off the path it
    is the single legal successor when there is exactly one; otherwise
    ``(None, False)``.
    """
    path = canonical_path(module)
    if status in path:
        idx = path.index(status)
        if idx + 1 < len(path):
            return path[idx + 1], True
        return None, False

    successors = legal_next(module, status)
    if len(successors) == 1:
        return next(iter(successors)), True
    return None, False


def progress_percent(module: ModuleKey | str, status: str) -> int:
    """Percentage complete for *status*, for progress indicators.

    A stopped or expired permit shows as finished; a rejected one as not
    started.  Unknown modules and statuses report 0.
    """
    key = parse_module(module)
    if key is None:
        return 0
    return _PROGRESS[key].get(status, 0)


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------

def validate_graph(graph: Mapping[str, frozenset[str]]) -> list[str]:
    """Return structural problems found in *graph* (empty when sound).

    Checks that every edge target is a declared status, that statuses in
    ``TERMINAL_STATUSES`` have no outgoing edges, and that every other
    status has at least one.
    """
    problems: list[str] = []
    for status, targets in graph.items():
        for target in sorted(targets):
            if target not in graph:
                problems.append(f"'{status}' -> '{target}': target is not a declared status")
        if status in TERMINAL_STATUSES and targets:
            problems.append(f"terminal status '{status}' has outgoing edges")
        if status not in TERMINAL_STATUSES and not targets:
            problems.append(f"non-terminal status '{status}' has no outgoing edges")
    return problems
