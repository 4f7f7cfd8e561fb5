"""
Tenant Configuration Store -- Versioned, Multi-Tenant Module Configuration.

Every tenant (company account) may override the built-in configuration of
each safety module: whether it is enabled, its approval chains, who may
stop work, the severity escalation matrix and its checklists.  The store
resolves the *effective* configuration by merging a tenant override over
the module default, field by field.

**Merge semantics:**  For every field present in the override, the default
value is replaced wholesale -- arrays and objects are never merged element
by element.  Absent fields inherit the default untouched.  This matches the
admin editor's "reset to default per field" behaviour and makes the merge
idempotent: ``merge(merge(d, o), o) == merge(d, o)``.

**Malformed overrides:**  An override that fails validation for one module
is discarded for that module only; the default is used and the condition
is logged for operators.  Other modules of the same tenant still resolve.

**Snapshots:**  Each tenant's effective configuration is held in an
immutable ``TenantSnapshot`` tagged with an epoch.  Edits build a complete
new snapshot and publish it by replacing a single reference, so a reader
holding epoch N keeps seeing epoch N even while epoch N+1 is published.
"""

from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from safeflow.audit import AuditEntry, AuditEventType, AuditLog
from safeflow.models import (
    ActionFlow,
    AnyOfFlow,
    ModuleKey,
    Role,
    Severity,
    StopWorkRole,
    WorkflowStep,
    check_step_order,
)

logger = logging.getLogger(__name__)


class MalformedConfigError(ValueError):
    """Raised when an administrator submits an override that fails validation."""

    def __init__(self, errors: list[str], module: str = "") -> None:
        self.module = module
        self.errors = errors
        subject = f"'{module}' override" if module else "override"
        super().__init__(f"Malformed {subject}: {'; '.join(errors)}")


# ---------------------------------------------------------------------------
# Module configuration model
# ---------------------------------------------------------------------------

class ModuleConfig(BaseModel):
    """Effective configuration of one module for one tenant.

    Field aliases follow the interchange document used by the admin
    configuration editor (``approvalFlow``, ``severityEscalation`` ...).
    Keys the engine does not model (``statusMap``, ``riskMatrix`` ...) are
    ignored rather than rejected.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    enabled: bool = Field(
        default=True,
        description="Whether the module is available to the tenant at all.",
    )
    approval_flow: tuple[WorkflowStep, ...] = Field(
        default=(),
        alias="approvalFlow",
        description="Sequential approval chain for normal-risk records.",
    )
    high_risk_approval_flow: tuple[WorkflowStep, ...] = Field(
        default=(),
        alias="highRiskApprovalFlow",
        description="Approval chain used instead of approvalFlow for high-risk records.",
    )
    extension_flow: tuple[WorkflowStep, ...] = Field(
        default=(),
        alias="extensionFlow",
        description="Approval chain for extending an active permit.",
    )
    closure_flow: Optional[AnyOfFlow] = Field(
        default=None,
        alias="closureFlow",
        description="Roles any one of which may close the record.",
    )
    stop_work_roles: tuple[StopWorkRole, ...] = Field(
        default=(),
        alias="stopWorkRoles",
    )
    severity_escalation: dict[Severity, tuple[Role, ...]] = Field(
        default_factory=dict,
        alias="severityEscalation",
        description=(
            "Severity -> ordered roles.  The first role is the recommended "
            "owner, the rest are informed/backup.  'low' must be defined."
        ),
    )
    checklists: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    flows: dict[str, ActionFlow] = Field(
        default_factory=dict,
        description="Per-action role lists and per-workflow step lists.",
    )

    @field_validator("approval_flow", "high_risk_approval_flow", "extension_flow")
    @classmethod
    def steps_strictly_increasing(
        cls, v: tuple[WorkflowStep, ...]
    ) -> tuple[WorkflowStep, ...]:
        check_step_order(v)
        return v

    @field_validator("severity_escalation")
    @classmethod
    def lowest_severity_defined(
        cls, v: dict[Severity, tuple[Role, ...]]
    ) -> dict[Severity, tuple[Role, ...]]:
        if Severity.LOW not in v:
            raise ValueError("severityEscalation must define the 'low' severity")
        for severity, roles in v.items():
            if not roles:
                raise ValueError(f"severityEscalation['{severity.value}'] must not be empty")
            if len(set(roles)) != len(roles):
                raise ValueError(f"severityEscalation['{severity.value}'] lists a role twice")
        return v


def _field_keys() -> dict[str, str]:
    """Map both field names and aliases to the alias used by ``model_dump``."""
    keys: dict[str, str] = {}
    for name, info in ModuleConfig.model_fields.items():
        alias = info.alias or name
        keys[name] = alias
        keys[alias] = alias
    return keys


_FIELD_KEYS = _field_keys()


# ---------------------------------------------------------------------------
# Built-in defaults
# ---------------------------------------------------------------------------

_STANDARD_ESCALATION = {
    "low": ["safety_incharge"],
    "medium": ["safety_incharge", "plant_head"],
    "high": ["safety_incharge", "plant_head"],
    "critical": ["safety_incharge", "plant_head", "company_owner"],
}

_DEFAULT_DOCUMENTS: dict[ModuleKey, dict[str, Any]] = {
    ModuleKey.PTW: {
        "enabled": True,
        "approvalFlow": [
            {"step": 1, "role": "hod", "label": "HOD Approval"},
            {"step": 2, "role": "safety_incharge", "label": "Safety Approval"},
        ],
        "highRiskApprovalFlow": [
            {"step": 1, "role": "plant_head", "label": "Plant Head Initial Approval"},
            {"step": 2, "role": "hod", "label": "HOD Approval"},
            {"step": 3, "role": "safety_incharge", "label": "Safety Approval"},
        ],
        "extensionFlow": [
            {"step": 1, "role": "hod", "label": "HOD Extension Approval"},
            {"step": 2, "role": "safety_incharge", "label": "Safety Extension Approval"},
        ],
        "closureFlow": {
            "anyOf": ["hod", "safety_incharge", "plant_head"],
            "label": "Closure Approval",
        },
        "stopWorkRoles": [
            {"role": "hod", "label": "HOD Stop Work"},
            {"role": "safety_incharge", "label": "Safety Stop Work"},
            {"role": "plant_head", "label": "Plant Head Stop Work"},
        ],
        "severityEscalation": {
            "low": ["hod"],
            "medium": ["hod", "safety_incharge"],
            "high": ["plant_head", "hod", "safety_incharge"],
            "critical": ["plant_head", "safety_incharge", "company_owner"],
        },
        "checklists": {
            "hotWork": [
                "Fire watch posted",
                "Hot work permit displayed",
                "Fire extinguisher available",
                "Area cleared of combustibles",
                "Welding screens in place",
            ],
            "coldWork": [
                "Area isolated",
                "Tools inspected",
                "PPE verified",
                "Emergency contacts available",
            ],
            "confinedSpace": [
                "Atmospheric testing completed",
                "Ventilation adequate",
                "Entry supervisor assigned",
                "Rescue plan in place",
                "Communication established",
            ],
            "workingAtHeight": [
                "Fall protection system inspected",
                "Anchor points verified",
                "Weather conditions acceptable",
                "Rescue plan available",
            ],
            "electrical": [
                "LOTO procedures followed",
                "Electrical isolation verified",
                "Testing equipment calibrated",
                "Qualified electrician present",
            ],
            "excavation": [
                "Underground utilities located",
                "Soil conditions assessed",
                "Shoring/sloping adequate",
                "Entry/exit routes clear",
            ],
        },
    },
    ModuleKey.IMS: {
        "enabled": True,
        "approvalFlow": [
            {"step": 1, "role": "safety_incharge", "label": "Investigation Assignment",
             "timeLimitHours": 24},
            {"step": 2, "role": "investigation_team", "label": "Investigation Execution",
             "timeLimitHours": 72},
            {"step": 3, "role": "plant_head", "label": "Investigation Review"},
        ],
        "closureFlow": {
            "anyOf": ["safety_incharge", "plant_head"],
            "label": "Incident Closure",
        },
        "severityEscalation": _STANDARD_ESCALATION,
    },
    ModuleKey.HAZOP: {
        "enabled": True,
        "closureFlow": {
            "anyOf": ["safety_incharge", "plant_head"],
            "label": "Study Closure",
        },
        "severityEscalation": _STANDARD_ESCALATION,
    },
    ModuleKey.HIRA: {
        "enabled": True,
        "approvalFlow": [
            {"step": 1, "role": "safety_incharge", "label": "Review & Approval"},
        ],
        "closureFlow": {
            "anyOf": ["safety_incharge", "plant_head"],
            "label": "Assessment Closure",
        },
        "severityEscalation": _STANDARD_ESCALATION,
    },
    ModuleKey.BBS: {
        "enabled": True,
        "approvalFlow": [
            {"step": 1, "role": "hod", "label": "HOD Review"},
            {"step": 2, "role": "safety_incharge", "label": "Safety Review"},
        ],
        "closureFlow": {
            "anyOf": ["safety_incharge", "plant_head"],
            "label": "Closure Approval",
        },
        "severityEscalation": _STANDARD_ESCALATION,
        "checklists": {
            "unsafeActs": [
                "PPE not used",
                "Wrong procedure",
                "Unsafe position",
                "Operating without authority",
                "Operating at unsafe speed",
                "Making safety devices inoperative",
            ],
            "unsafeConditions": [
                "Defective equipment",
                "Inadequate guards/barriers",
                "Defective PPE",
                "Poor housekeeping",
                "Hazardous environmental conditions",
                "Inadequate warning systems",
            ],
            "safeBehaviors": [
                "Proper PPE usage",
                "Following procedures",
                "Good housekeeping",
                "Safety awareness",
                "Proactive safety behavior",
                "Helping others with safety",
            ],
        },
    },
    ModuleKey.AUDIT: {
        "enabled": True,
        "approvalFlow": [
            {"step": 1, "role": "auditor", "label": "Findings Documentation",
             "timeLimitHours": 168},
            {"step": 2, "role": "safety_incharge", "label": "Review & Closure",
             "timeLimitHours": 72},
        ],
        "closureFlow": {
            "anyOf": ["safety_incharge"],
            "label": "Audit Closure",
        },
        "severityEscalation": _STANDARD_ESCALATION,
    },
}

DEFAULT_MODULE_CONFIGS: Mapping[ModuleKey, ModuleConfig] = MappingProxyType({
    key: ModuleConfig.model_validate(doc) for key, doc in _DEFAULT_DOCUMENTS.items()
})
"""Built-in configuration for every module, used when a tenant has no override."""


# ---------------------------------------------------------------------------
# Merge and validation
# ---------------------------------------------------------------------------

def merge_module_config(default: ModuleConfig, override: Mapping[str, Any]) -> ModuleConfig:
    """Merge *override* over *default*, replacing each present field wholesale.

    Raises:
        MalformedConfigError: If *override* is not a mapping.
        pydantic.ValidationError: If the merged document fails validation.
    """
    if not isinstance(override, Mapping):
        raise MalformedConfigError(["override must be a mapping"])
    if not override:
        return default

    merged = default.model_dump(by_alias=True)
    for key, value in override.items():
        target = _FIELD_KEYS.get(key)
        if target is None:
            continue
        merged[target] = copy.deepcopy(value)
    return ModuleConfig.model_validate(merged)


def _format_errors(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


def validate_override(module: ModuleKey | str, override: Any) -> list[str]:
    """Return validation errors for *override* of *module* (empty if valid).

    Intended for the admin configuration editor, which shows the messages
    next to the offending fields before saving.
    """
    try:
        key = ModuleKey(module)
    except ValueError:
        return [f"unknown module '{module}'"]
    return _merge_errors(DEFAULT_MODULE_CONFIGS[key], override)


def _merge_errors(default: ModuleConfig, override: Any) -> list[str]:
    try:
        merge_module_config(default, override)
    except MalformedConfigError as exc:
        return exc.errors
    except ValidationError as exc:
        return _format_errors(exc)
    return []


# ---------------------------------------------------------------------------
# Snapshots and store
# ---------------------------------------------------------------------------

class TenantSnapshot:
    """Immutable effective configuration of every module for one tenant."""

    __slots__ = ("tenant_id", "epoch", "_modules", "_overrides")

    def __init__(
        self,
        tenant_id: str,
        epoch: int,
        modules: Mapping[ModuleKey, ModuleConfig],
        overrides: Mapping[ModuleKey, Mapping[str, Any]],
    ) -> None:
        self.tenant_id = tenant_id
        self.epoch = epoch
        self._modules = MappingProxyType(dict(modules))
        self._overrides = MappingProxyType(copy.deepcopy(dict(overrides)))

    def module(self, module: ModuleKey | str) -> ModuleConfig:
        """Return a copy of the effective config for *module*.

        The snapshot's own configs are never handed out; editing the copy's
        maps leaves this and every other snapshot unchanged.

        Raises:
            ValueError: If *module* is not a known module key.
        """
        return self._modules[ModuleKey(module)].model_copy(deep=True)

    def is_enabled(self, module: ModuleKey | str) -> bool:
        return self._modules[ModuleKey(module)].enabled

    @property
    def enabled_modules(self) -> frozenset[ModuleKey]:
        return frozenset(k for k, cfg in self._modules.items() if cfg.enabled)

    def override(self, module: ModuleKey | str) -> dict[str, Any]:
        """Return a copy of the raw override applied to *module* (``{}`` if none)."""
        return copy.deepcopy(dict(self._overrides.get(ModuleKey(module), {})))

    @property
    def overridden_modules(self) -> frozenset[ModuleKey]:
        return frozenset(self._overrides)

    def __repr__(self) -> str:
        return f"TenantSnapshot(tenant_id={self.tenant_id!r}, epoch={self.epoch})"


class ConfigStore:
    """Versioned per-tenant configuration store.

    Readers call ``snapshot()`` / ``resolve()`` without locking.  Writers
    (``load_tenant``, ``update``, ``reset``) are serialized, build a full
    new ``TenantSnapshot`` with the next epoch, and publish it by replacing
    the tenant's entry.  A snapshot already handed out is never modified.

    Tenants that were never loaded resolve to the built-in defaults at
    epoch 0.
    """

    def __init__(
        self,
        defaults: Optional[Mapping[ModuleKey, ModuleConfig]] = None,
        audit_log: Optional[AuditLog] = None,
    ) -> None:
        self._defaults = MappingProxyType({
            key: cfg.model_copy(deep=True)
            for key, cfg in (defaults or DEFAULT_MODULE_CONFIGS).items()
        })
        self._snapshots: dict[str, TenantSnapshot] = {}
        self._write_lock = threading.Lock()
        self._audit_log = audit_log

    # -- reads --

    def snapshot(self, tenant_id: str) -> TenantSnapshot:
        """Return the tenant's current snapshot."""
        snap = self._snapshots.get(tenant_id)
        if snap is None:
            return TenantSnapshot(tenant_id, 0, self._defaults, {})
        return snap

    def current_epoch(self, tenant_id: str) -> int:
        return self.snapshot(tenant_id).epoch

    def resolve(self, tenant_id: str, module: ModuleKey | str) -> ModuleConfig:
        """Return a copy of the effective config of *module* for *tenant_id*.

        A module the tenant never overrode resolves to its default.
        """
        return self.snapshot(tenant_id).module(module)

    def default(self, module: ModuleKey | str) -> ModuleConfig:
        return self._defaults[ModuleKey(module)].model_copy(deep=True)

    def tenants(self) -> list[str]:
        return sorted(self._snapshots)

    # -- writes --

    def load_tenant(
        self,
        tenant_id: str,
        overrides: Mapping[str, Any],
        actor_id: str = "SYSTEM",
    ) -> TenantSnapshot:
        """Replace the tenant's whole configuration with *overrides*.

        *overrides* maps module keys to override documents.  A malformed
        override (or an unknown module key) is discarded and logged; the
        remaining modules are still applied.  Modules absent from
        *overrides* revert to their defaults.
        """
        modules: dict[ModuleKey, ModuleConfig] = dict(self._defaults)
        applied: dict[ModuleKey, Mapping[str, Any]] = {}
        rejected: dict[str, list[str]] = {}

        for raw_key, override in (overrides or {}).items():
            try:
                key = ModuleKey(raw_key)
            except ValueError:
                rejected[str(raw_key)] = [f"unknown module '{raw_key}'"]
                continue
            try:
                modules[key] = merge_module_config(self._defaults[key], override)
            except MalformedConfigError as exc:
                rejected[key.value] = exc.errors
                continue
            except ValidationError as exc:
                rejected[key.value] = _format_errors(exc)
                continue
            applied[key] = override

        for module, errors in rejected.items():
            logger.warning(
                "Discarding malformed override tenant=%s module=%s errors=%s",
                tenant_id, module, errors,
            )
            self._audit(tenant_id, AuditEventType.CONFIG_REJECTED, actor_id,
                        module=module, epoch=self.current_epoch(tenant_id),
                        metadata={"errors": errors})

        snap = self._publish(tenant_id, modules, applied)
        self._audit(tenant_id, AuditEventType.CONFIG_PUBLISHED, actor_id,
                    epoch=snap.epoch,
                    metadata={
                        "applied": sorted(k.value for k in applied),
                        "rejected": sorted(rejected),
                    })
        return snap

    def update(
        self,
        tenant_id: str,
        module: ModuleKey | str,
        override: Mapping[str, Any],
        actor_id: str = "SYSTEM",
    ) -> ModuleConfig:
        """Replace one module's override with *override* and publish.

        The previous override of that module is discarded, not patched.

        Raises:
            MalformedConfigError: If *override* fails validation.  Nothing
                is published in that case.
        """
        key = ModuleKey(module)
        errors = _merge_errors(self._defaults[key], override)
        if errors:
            logger.warning(
                "Rejected override tenant=%s module=%s errors=%s",
                tenant_id, key.value, errors,
            )
            self._audit(tenant_id, AuditEventType.CONFIG_REJECTED, actor_id,
                        module=key.value, epoch=self.current_epoch(tenant_id),
                        metadata={"errors": errors})
            raise MalformedConfigError(errors, module=key.value)

        with self._write_lock:
            current = self.snapshot(tenant_id)
            modules = {k: current.module(k) for k in self._defaults}
            overrides = {k: current.override(k) for k in current.overridden_modules}
            modules[key] = merge_module_config(self._defaults[key], override)
            overrides[key] = override
            snap = self._swap(tenant_id, modules, overrides)

        self._audit(tenant_id, AuditEventType.CONFIG_PUBLISHED, actor_id,
                    module=key.value, epoch=snap.epoch,
                    metadata={"fields": sorted(override)})
        return snap.module(key)

    def reset(
        self,
        tenant_id: str,
        module: ModuleKey | str,
        actor_id: str = "SYSTEM",
    ) -> ModuleConfig:
        """Restore *module* to its built-in default for *tenant_id*.

        Sibling modules keep their current configuration.
        """
        key = ModuleKey(module)
        with self._write_lock:
            current = self.snapshot(tenant_id)
            modules = {k: current.module(k) for k in self._defaults}
            overrides = {
                k: current.override(k)
                for k in current.overridden_modules
                if k != key
            }
            modules[key] = self._defaults[key]
            snap = self._swap(tenant_id, modules, overrides)

        self._audit(tenant_id, AuditEventType.CONFIG_RESET, actor_id,
                    module=key.value, epoch=snap.epoch)
        return snap.module(key)

    # -- helpers --

    def _publish(
        self,
        tenant_id: str,
        modules: Mapping[ModuleKey, ModuleConfig],
        overrides: Mapping[ModuleKey, Mapping[str, Any]],
    ) -> TenantSnapshot:
        with self._write_lock:
            return self._swap(tenant_id, modules, overrides)

    def _swap(
        self,
        tenant_id: str,
        modules: Mapping[ModuleKey, ModuleConfig],
        overrides: Mapping[ModuleKey, Mapping[str, Any]],
    ) -> TenantSnapshot:
        # Caller holds the write lock.
        epoch = self.current_epoch(tenant_id) + 1
        snap = TenantSnapshot(tenant_id, epoch, modules, overrides)
        self._snapshots[tenant_id] = snap
        logger.info(
            "Published configuration tenant=%s epoch=%d overridden=%s",
            tenant_id, epoch, sorted(k.value for k in snap.overridden_modules),
        )
        return snap

    def _audit(
        self,
        tenant_id: str,
        event_type: AuditEventType,
        actor_id: str,
        module: str = "",
        epoch: int = 0,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        if self._audit_log is None:
            return
        self._audit_log.append(AuditEntry(
            tenant_id=tenant_id,
            actor_id=actor_id,
            event_type=event_type,
            module=module,
            epoch=epoch,
            metadata=metadata or {},
        ))

    def load_yaml(self, path: str | Path, actor_id: str = "SYSTEM") -> list[str]:
        """Load every tenant from a YAML overrides file; return their ids."""
        documents = load_overrides_from_yaml(path)
        for tenant_id, overrides in documents.items():
            self.load_tenant(tenant_id, overrides, actor_id=actor_id)
        return sorted(documents)


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def load_overrides_from_yaml(path: str | Path) -> dict[str, dict[str, Any]]:
    """Load tenant overrides from a YAML file.

    The file must contain a top-level ``tenants`` mapping of tenant id to a
    mapping of module key to override document::

        tenants:
          acme_refinery:
            ptw:
              approvalFlow:
                - {step: 1, role: hod, label: HOD Approval}
            hazop:
              enabled: false

    Module documents are returned unvalidated; ``ConfigStore.load_tenant``
    validates and discards malformed ones individually.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document structure is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Overrides file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "tenants" not in raw:
        raise ValueError(
            "YAML file must contain a top-level 'tenants' key mapping tenant ids to module overrides."
        )

    tenants = raw["tenants"] or {}
    if not isinstance(tenants, dict):
        raise ValueError("'tenants' must be a mapping of tenant id to module overrides.")

    result: dict[str, dict[str, Any]] = {}
    for tenant_id, modules in tenants.items():
        if modules is None:
            modules = {}
        if not isinstance(modules, dict):
            raise ValueError(f"Overrides for tenant '{tenant_id}' must be a mapping.")
        result[str(tenant_id)] = modules
    return result
