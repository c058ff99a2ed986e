"""Decide who a validation query is assigned to.

Order of resolution:
1. Form id from the instance, when only the instance is known
2. Users routed by the form's workflow configuration (first is primary)
3. Study users by role priority
4. Any active study user
Nothing found means the query is created unassigned.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.engine import Connection

from edcrules.interfaces import UserDirectory
from edcrules.storage.lookup import DataPointLookup
from edcrules.workflow.provider import WorkflowConfigProvider

logger = logging.getLogger(__name__)

DEFAULT_ROLE_PRIORITY = (
    "Study Coordinator",
    "Clinical Research Coordinator",
    "Data Manager",
    "coordinator",
)


@dataclass
class AssigneeResolution:
    """Primary assignee plus routed users to notify."""

    primary_user_id: int | None = None
    additional_user_ids: list[int] = field(default_factory=list)
    source: str = "none"


class AssigneeResolver:
    def __init__(
        self,
        users: UserDirectory,
        workflow: WorkflowConfigProvider | None = None,
        instances: DataPointLookup | None = None,
        role_priority: tuple[str, ...] = DEFAULT_ROLE_PRIORITY,
    ):
        self._users = users
        self._workflow = workflow
        self._instances = instances
        self._role_priority = role_priority

    def resolve_all_assignees(
        self,
        form_id: int | None = None,
        study_id: int | None = None,
        instance_id: int | None = None,
        conn: Connection | None = None,
    ) -> AssigneeResolution:
        if form_id is None and instance_id is not None and self._instances is not None:
            form_id = self._instances.form_id_for_instance(instance_id, conn)

        if form_id is not None and self._workflow is not None:
            config = self._workflow.get_form_config(form_id, study_id, conn)
            routed = config.query_route_to_user_ids
            if routed:
                logger.info(
                    "Routing query for form %s to user %s via workflow config", form_id, routed[0]
                )
                return AssigneeResolution(routed[0], list(routed[1:]), "workflow")
            if config.query_route_to_users:
                logger.warning(
                    "Workflow config for form %s routes to %s but none are active users",
                    form_id,
                    ", ".join(config.query_route_to_users),
                )

        default = self.resolve_default_assignee(study_id, conn)
        if default is None:
            return AssigneeResolution()
        return AssigneeResolution(default, [], "role")

    def resolve_assignee(
        self,
        form_id: int | None = None,
        study_id: int | None = None,
        instance_id: int | None = None,
        conn: Connection | None = None,
    ) -> int | None:
        return self.resolve_all_assignees(form_id, study_id, instance_id, conn).primary_user_id

    def resolve_default_assignee(self, study_id: int | None, conn: Connection | None = None) -> int | None:
        """Role-priority fallback within the study."""
        if study_id is None:
            return None
        for role in self._role_priority:
            user_ids = self._users.users_with_role(study_id, [role], conn)
            if user_ids:
                return user_ids[0]
        return self._users.any_study_user(study_id, conn)
