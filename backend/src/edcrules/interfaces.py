"""Boundaries the engine calls out to.

SQL-backed implementations live in edcrules.directory and edcrules.audit;
a host application can pass its own objects satisfying these protocols.
Every method accepts an optional connection so the call can join an open
transaction.
"""

from typing import Any, Protocol, Sequence

from sqlalchemy.engine import Connection


class AuditRecorder(Protocol):
    """Records audit events for queries and rule management."""

    def record(
        self,
        event: str,
        entity_type: str,
        entity_id: int | None,
        old_value: Any = None,
        new_value: Any = None,
        reason: str | None = None,
        user_id: int | None = None,
        conn: Connection | None = None,
    ) -> None:
        ...


class UserDirectory(Protocol):
    """Resolves usernames and study roles to active user ids."""

    def user_ids_for_usernames(
        self, usernames: Sequence[str], conn: Connection | None = None
    ) -> list[int]:
        """Active, enabled user ids in the order the usernames were given."""
        ...

    def users_with_role(
        self, study_id: int, role_names: Sequence[str], conn: Connection | None = None
    ) -> list[int]:
        """Active user ids holding one of the roles in the study."""
        ...

    def any_study_user(self, study_id: int, conn: Connection | None = None) -> int | None:
        """Any active, enabled user assigned to the study."""
        ...


class OrganizationDirectory(Protocol):
    """Answers organization-scoping questions for rule access."""

    def colleague_ids(self, user_id: int, conn: Connection | None = None) -> set[int] | None:
        """Ids of users sharing an organization with user_id.

        None means the user belongs to no organization and is not scoped.
        """
        ...

    def form_owner(self, form_id: int, conn: Connection | None = None) -> int | None:
        ...
