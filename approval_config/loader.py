"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into approval rules and the typed
``approval_config.schema`` engine configuration.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Consumed by
``approval_config.get_engine_config`` and by rule seeding through
``RuleService.seed_rules``.

Invariants enforced
-------------------
* Rule parse errors raise ``ValidationError`` naming the missing key;
  engine configuration errors raise ``ValueError`` or ``KeyError``.
* Rules loaded from a file pass ``ensure_valid_rule`` before they are
  returned.
* Seeded rules without an explicit ``id`` get a deterministic UUID derived
  from tenant and name, so reseeding updates instead of duplicating.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing engine configuration keys  -> ``KeyError`` propagates.
* Invalid enum, time or date values  -> ``ValueError``.
* Missing rule keys or invalid rule  -> ``ValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, time
from pathlib import Path
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import yaml

from approval_config.schema import EngineConfig, EscalationConfig, WorkingHours
from approval_config.validator import ensure_valid_rule
from approval_kernel.exceptions import ValidationError
from approval_kernel.domain import codec
from approval_kernel.domain.approval import ApprovalRule, ModuleType

_RULE_NAMESPACE = uuid5(NAMESPACE_URL, "approval-rules")

_WEEKDAYS = {
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3,
    "friday": 4, "saturday": 5, "sunday": 6,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_time(value: Any) -> time:
    """Parse ``"HH:MM"`` (YAML may also hand over minutes-since-midnight)."""
    if isinstance(value, time):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        # YAML 1.1 reads 09:00 as sexagesimal minutes.
        return time(value // 60, value % 60)
    if isinstance(value, str):
        return time.fromisoformat(value)
    raise ValueError(f"Cannot parse time from {value!r}")


def parse_weekday(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 6:
        return value
    if isinstance(value, str) and value.lower() in _WEEKDAYS:
        return _WEEKDAYS[value.lower()]
    raise ValueError(f"Cannot parse weekday from {value!r}")


def rule_id_for(tenant_id: str, name: str) -> UUID:
    return uuid5(_RULE_NAMESPACE, f"{tenant_id}:{name}")


def parse_rule(data: dict[str, Any], tenant_id: str | None = None) -> ApprovalRule:
    """Parse one rule dict; ``tenant_id`` fills in when the dict has none.

    Missing keys and malformed values surface as ``ValidationError`` so
    seeding reports them the same way the admin path does.
    """
    if not isinstance(data, dict):
        raise ValidationError.single("rule", "must be a mapping")
    try:
        return _build_rule(data, tenant_id)
    except KeyError as exc:
        key = exc.args[0] if exc.args else "rule"
        raise ValidationError.single(str(key), "is required") from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError.single("rule", str(exc)) from exc


def _build_rule(data: dict[str, Any], tenant_id: str | None) -> ApprovalRule:
    tenant = data.get("tenant_id") or tenant_id
    if not tenant:
        raise KeyError("tenant_id")
    name = data["name"]
    raw_id = data.get("id")
    return ApprovalRule(
        id=UUID(str(raw_id)) if raw_id else rule_id_for(tenant, name),
        tenant_id=tenant,
        name=name,
        description=data.get("description", ""),
        module_type=ModuleType(data["module_type"]),
        entity_type=data.get("entity_type"),
        query_conditions=tuple(codec.condition_from_dict(c) for c in data["query_conditions"]),
        steps=tuple(codec.step_from_dict(s) for s in data["steps"]),
        escalation_settings=codec.escalation_from_dict(data.get("escalation_settings")),
        auto_approval_conditions=codec.auto_approval_from_dict(data.get("auto_approval_conditions")),
        sla_hours=float(data.get("sla_hours", 24)),
        business_hours_only=bool(data.get("business_hours_only", False)),
        priority=int(data.get("priority", 100)),
        is_active=bool(data.get("is_active", True)),
        created_by_id=data.get("created_by_id"),
    )


def load_rules(path: Path, tenant_id: str | None = None) -> list[ApprovalRule]:
    """Load and validate every rule of a YAML file.

    The file holds ``rules:`` (a list) and optionally a top-level
    ``tenant_id`` applied to rules that do not name one.
    """
    data = load_yaml_file(path)
    default_tenant = data.get("tenant_id") or tenant_id
    return [ensure_valid_rule(parse_rule(item, default_tenant)) for item in data.get("rules") or ()]


def parse_working_hours(data: dict[str, Any] | None) -> WorkingHours:
    if not data:
        return WorkingHours()
    defaults = WorkingHours()
    return WorkingHours(
        start=parse_time(data["start"]) if "start" in data else defaults.start,
        end=parse_time(data["end"]) if "end" in data else defaults.end,
        weekend_days=tuple(parse_weekday(d) for d in data.get("weekend_days", defaults.weekend_days)),
        holidays=tuple(parse_date(d) for d in data.get("holidays") or ()),
    )


def parse_escalation_config(data: dict[str, Any] | None) -> EscalationConfig:
    if not data:
        return EscalationConfig()
    defaults = EscalationConfig()
    return EscalationConfig(
        reminder_thresholds=tuple(
            float(t) for t in data.get("reminder_thresholds", defaults.reminder_thresholds)
        ),
        warning_percentage=float(data.get("warning_percentage", defaults.warning_percentage)),
        auto_escalation_enabled=bool(
            data.get("auto_escalation_enabled", defaults.auto_escalation_enabled)
        ),
        auto_approve_on_timeout=bool(
            data.get("auto_approve_on_timeout", defaults.auto_approve_on_timeout)
        ),
        expiration_grace_hours=float(
            data.get("expiration_grace_hours", defaults.expiration_grace_hours)
        ),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse an EngineConfig from a dict; missing sections take defaults."""
    return EngineConfig(
        escalation=parse_escalation_config(data.get("escalation")),
        working_hours=parse_working_hours(data.get("working_hours")),
        tenant_id=data.get("tenant_id"),
        checksum=compute_checksum(data),
    )


def load_engine_config(path: Path) -> EngineConfig:
    return parse_engine_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
