"""
SafeFlow Workflow & Status Rule Engine
======================================

The decision layer of a multi-tenant safety-management suite (permits to
work, incidents, HAZOP, HIRA, behavior-based safety, audits).  It decides
which status transitions are legal, which roles may invoke which action,
who a record escalates to for its severity, whether an assigned step is
overdue, and whether an actor may reach a protected resource.

The engine holds no entity state.  Callers pass in the current status,
role and timestamps; tenant configuration comes from a versioned
``ConfigStore`` snapshot.
"""

__version__ = "0.1.0"
