"""Rule management surface."""

from edcrules.management.requests import CreateRuleRequest, RuleTrialRequest, UpdateRuleRequest
from edcrules.management.service import RuleManagementService

__all__ = ["CreateRuleRequest", "RuleManagementService", "RuleTrialRequest", "UpdateRuleRequest"]
