"""Shared helpers for InstanceStore implementations."""

from __future__ import annotations

from dataclasses import fields
from typing import Any, Mapping

from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.exceptions import ValidationError

# Identity and concurrency fields are owned by the store.
IMMUTABLE_INSTANCE_FIELDS = frozenset({"id", "tenant_id", "version", "created_at"})

PATCHABLE_INSTANCE_FIELDS = frozenset(
    f.name for f in fields(ApprovalInstance)
) - IMMUTABLE_INSTANCE_FIELDS


def validate_instance_patch(patch: Mapping[str, Any]) -> None:
    bad = sorted(set(patch) - PATCHABLE_INSTANCE_FIELDS)
    if bad:
        raise ValidationError.single("patch", f"fields not patchable: {', '.join(bad)}")
