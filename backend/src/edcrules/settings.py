"""Engine settings resolved from the environment.

Capabilities that depend on the deployment (is the native rule engine
installed, is workflow configuration available) are decided once at
startup and passed in here, never rediscovered per call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ScopePolicy(Enum):
    """What to do when a caller asks for rules of a form outside their organization.

    HIDE: return an empty rule set, as if the form had no rules
    DENY: raise RuleAccessDenied
    """

    HIDE = "hide"
    DENY = "deny"


_TRUE = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE


@dataclass
class EngineSettings:
    """Runtime settings for the validation engine.

    Attributes:
        format_types_path: Override for the format registry document
        native_rules_enabled: Load rules from the native rule tables
        workflow_config_enabled: Consult per-form workflow configuration
        scope_policy: Behaviour for out-of-organization rule requests
        log_level: Logging level name used by the CLI
    """

    format_types_path: Path | None = None
    native_rules_enabled: bool = False
    workflow_config_enabled: bool = True
    scope_policy: ScopePolicy = ScopePolicy.HIDE
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Read settings from EDCRULES_* environment variables."""
        path = os.environ.get("EDCRULES_FORMAT_TYPES")
        policy = os.environ.get("EDCRULES_SCOPE_POLICY", ScopePolicy.HIDE.value)
        return cls(
            format_types_path=Path(path) if path else None,
            native_rules_enabled=_env_flag("EDCRULES_NATIVE_RULES", False),
            workflow_config_enabled=_env_flag("EDCRULES_WORKFLOW_CONFIG", True),
            scope_policy=ScopePolicy(policy.strip().lower()),
            log_level=os.environ.get("EDCRULES_LOG_LEVEL", "WARNING").upper(),
        )
