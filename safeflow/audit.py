"""
Append-Only, Tamper-Evident Configuration Audit Log (Hash-Chained).

The rule engine itself is stateless; the only mutations it sees are
administrator edits to tenant configuration.  Every publish, reset and
rejected override is recorded here as a structured entry.  Entries are
linked via a SHA-256 hash chain: if any entry is modified after the fact,
``verify_chain()`` reports the first broken link.

**Multi-tenant isolation:**  ``query()`` is always scoped by ``tenant_id``.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class AuditEventType(str, enum.Enum):
    """Configuration events recorded by the store."""

    CONFIG_PUBLISHED = "CONFIG_PUBLISHED"
    CONFIG_RESET = "CONFIG_RESET"
    CONFIG_REJECTED = "CONFIG_REJECTED"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    entry_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this audit entry (UUID).",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp of the event.",
    )
    tenant_id: str = Field(
        ...,
        description="Tenant the event belongs to (isolation key).",
    )
    actor_id: str = Field(
        default="SYSTEM",
        description="Who made the change (admin user id or SYSTEM).",
    )
    event_type: AuditEventType
    module: str = Field(
        default="",
        description="Module key the event concerns, empty for tenant-wide loads.",
    )
    epoch: int = Field(
        default=0,
        description="Configuration epoch in effect after the event.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="SHA-256 of the previous entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Return a deterministic byte representation for hashing."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id,
            "event_type": self.event_type.value,
            "module": self.module,
            "epoch": self.epoch,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


class AuditLog:
    """Append-only audit log with SHA-256 hash chaining.

    There are no ``update()`` or ``delete()`` methods.  Appends are
    serialized so concurrent writers still produce a single linear chain.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._hashes: list[str] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Link *entry* to the chain tip and append it."""
        with self._lock:
            entry.previous_hash = self._hashes[-1] if self._hashes else ""
            self._entries.append(entry)
            self._hashes.append(entry.compute_hash())
        return entry

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the log and validate every hash link.

        Returns:
            ``(valid, broken_at)`` where ``broken_at`` is the index of the
            first broken link, or ``None`` if the chain is intact.
        """
        for i, entry in enumerate(self._entries):
            expected_prev = self._entries[i - 1].compute_hash() if i else ""
            if entry.previous_hash != expected_prev:
                return (False, i)
            if self._hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        tenant_id: str,
        event_type: Optional[AuditEventType] = None,
        module: Optional[str] = None,
    ) -> list[AuditEntry]:
        """Return copies of the entries for *tenant_id*, optionally filtered."""
        results = []
        for entry in self._entries:
            if entry.tenant_id != tenant_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if module is not None and entry.module != module:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def __len__(self) -> int:
        return len(self._entries)
