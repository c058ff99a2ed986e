"""SQL implementations of the user and organization directories."""

from typing import Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection, Engine

from edcrules.persistence.session import connection


class SqlUserDirectory:
    """User lookups against the users and study_user_roles tables."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def user_ids_for_usernames(
        self, usernames: Sequence[str], conn: Connection | None = None
    ) -> list[int]:
        names = [name for name in usernames if name]
        if not names:
            return []
        stmt = text("""
            SELECT id, username FROM users
            WHERE username IN :names AND enabled = 1 AND status = 'active'
        """).bindparams(bindparam("names", expanding=True))
        with connection(self._engine, conn) as c:
            rows = c.execute(stmt, {"names": names}).mappings().all()
        by_name = {row["username"]: row["id"] for row in rows}
        return [by_name[name] for name in names if name in by_name]

    def users_with_role(
        self, study_id: int, role_names: Sequence[str], conn: Connection | None = None
    ) -> list[int]:
        if not role_names:
            return []
        stmt = text("""
            SELECT DISTINCT u.id, r.role_name
            FROM study_user_roles r
            INNER JOIN users u ON u.username = r.username
            WHERE r.study_id = :study_id
              AND r.status = 'active'
              AND u.enabled = 1
              AND u.status = 'active'
              AND LOWER(r.role_name) IN :roles
            ORDER BY u.id
        """).bindparams(bindparam("roles", expanding=True))
        with connection(self._engine, conn) as c:
            rows = c.execute(
                stmt, {"study_id": study_id, "roles": [r.lower() for r in role_names]}
            ).mappings().all()
        return [row["id"] for row in rows]

    def any_study_user(self, study_id: int, conn: Connection | None = None) -> int | None:
        with connection(self._engine, conn) as c:
            row = c.execute(
                text("""
                    SELECT u.id
                    FROM study_user_roles r
                    INNER JOIN users u ON u.username = r.username
                    WHERE r.study_id = :study_id
                      AND r.status = 'active'
                      AND u.enabled = 1
                      AND u.status = 'active'
                    ORDER BY u.id
                    LIMIT 1
                """),
                {"study_id": study_id},
            ).first()
        return row[0] if row else None


class SqlOrganizationDirectory:
    """Organization membership lookups."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def colleague_ids(self, user_id: int, conn: Connection | None = None) -> set[int] | None:
        with connection(self._engine, conn) as c:
            org_ids = c.execute(
                text("""
                    SELECT organization_id FROM organization_members
                    WHERE user_id = :user_id AND status = 'active'
                """),
                {"user_id": user_id},
            ).scalars().all()
            if not org_ids:
                return None
            members = c.execute(
                text("""
                    SELECT DISTINCT user_id FROM organization_members
                    WHERE organization_id IN :orgs AND status = 'active'
                """).bindparams(bindparam("orgs", expanding=True)),
                {"orgs": list(org_ids)},
            ).scalars().all()
        return set(members)

    def form_owner(self, form_id: int, conn: Connection | None = None) -> int | None:
        with connection(self._engine, conn) as c:
            return c.execute(
                text("SELECT owner_id FROM forms WHERE id = :form_id"),
                {"form_id": form_id},
            ).scalar()
