"""
approval_config -- single public entrypoint for approval engine configuration.

Responsibility:
    Provides ``get_engine_config()``, the runtime way to obtain the engine
    configuration (escalation policy, working hours, reminder thresholds),
    plus the YAML rule loader and the rule validator used by
    administrative tooling.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and
    ``approval_engines`` and below ``approval_services``.  The kernel MUST
    NEVER import from ``approval_config``.

Failure modes:
    - ``FileNotFoundError`` -- an explicit or environment-provided path
      does not exist.
    - ``ValueError`` / ``KeyError`` -- malformed configuration.

Audit relevance:
    Every ``get_engine_config()`` call that reads a file emits an
    ``APPROVAL_CONFIG_TRACE`` log entry with the path and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from approval_config.loader import load_engine_config, load_rules, parse_engine_config, parse_rule
from approval_config.schema import EngineConfig, EscalationConfig, WorkingHours
from approval_config.validator import ensure_valid_rule, validate_rule
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "APPROVAL_ENGINE_CONFIG"


def get_engine_config(path: Path | str | None = None) -> EngineConfig:
    """Return the engine configuration.

    Resolution order: explicit ``path``, then the ``APPROVAL_ENGINE_CONFIG``
    environment variable, then built-in defaults.
    """
    source = path or os.environ.get(CONFIG_ENV_VAR)
    if not source:
        return EngineConfig()

    config = load_engine_config(Path(source))
    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_path": str(source),
            "checksum": config.checksum,
            "tenant_id": config.tenant_id,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "EngineConfig",
    "EscalationConfig",
    "WorkingHours",
    "ensure_valid_rule",
    "get_engine_config",
    "load_engine_config",
    "load_rules",
    "parse_engine_config",
    "parse_rule",
    "validate_rule",
]
