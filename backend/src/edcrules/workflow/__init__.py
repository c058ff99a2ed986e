"""Workflow configuration and query routing."""

from edcrules.workflow.assignee import DEFAULT_ROLE_PRIORITY, AssigneeResolution, AssigneeResolver
from edcrules.workflow.provider import WORKFLOW_STEPS, FormWorkflowConfig, WorkflowConfigProvider

__all__ = [
    "DEFAULT_ROLE_PRIORITY",
    "WORKFLOW_STEPS",
    "AssigneeResolution",
    "AssigneeResolver",
    "FormWorkflowConfig",
    "WorkflowConfigProvider",
]
