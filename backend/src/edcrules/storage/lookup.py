"""Resolve field names to stable data point ids for a form instance.

A data point is one stored value (an item_data row). Queries link to data
points because the id stays the same however the field happens to be
named in a given payload: by template name, lowercase name, OID, or the
`item_<field id>` key used when a rule references the field by id.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from edcrules.persistence.session import connection
from edcrules.rules.matching import data_point_for, field_storage_key


@dataclass
class InstanceSnapshot:
    """A stored form instance with its values.

    Attributes:
        instance_id: Form instance id
        form_id: Form the instance was created from
        form_version_id: Form version, if versioned
        study_id: Owning study
        subject_id: Subject the data belongs to
        form_data: Field name to stored value
        storage_id_map: Field name / OID / item key to data point id
    """

    instance_id: int
    form_id: int
    form_version_id: int | None
    study_id: int | None
    subject_id: int | None
    form_data: dict[str, Any] = field(default_factory=dict)
    storage_id_map: dict[str, int] = field(default_factory=dict)


class DataPointLookup:
    """Reads stored values and data point ids for form instances."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def _rows(self, instance_id: int, conn: Connection | None) -> list[Any]:
        with connection(self._engine, conn) as c:
            return c.execute(
                text("""
                    SELECT d.id AS data_point_id, d.item_id, d.value,
                           i.name AS field_name, i.oid AS field_oid
                    FROM item_data d
                    INNER JOIN items i ON i.id = d.item_id
                    WHERE d.instance_id = :instance_id AND d.deleted = 0
                    ORDER BY d.id
                """),
                {"instance_id": instance_id},
            ).mappings().all()

    @staticmethod
    def _map_rows(rows: list[Any]) -> dict[str, int]:
        storage: dict[str, int] = {}
        for row in rows:
            storage[row["field_name"]] = row["data_point_id"]
            storage[row["field_name"].lower()] = row["data_point_id"]
            if row["field_oid"]:
                storage[row["field_oid"]] = row["data_point_id"]
            storage[field_storage_key(row["item_id"])] = row["data_point_id"]
        return storage

    def storage_id_map(self, instance_id: int, conn: Connection | None = None) -> dict[str, int]:
        """Map every known name of each stored field to its data point id."""
        return self._map_rows(self._rows(instance_id, conn))

    def find_data_point_id(
        self,
        instance_id: int,
        field_id: int | None = None,
        field_path: str | None = None,
        conn: Connection | None = None,
    ) -> int | None:
        """Find the data point for a field by id or by path."""
        storage = self.storage_id_map(instance_id, conn)
        if field_id is not None and storage.get(field_storage_key(field_id)):
            return storage[field_storage_key(field_id)]
        if field_path:
            return data_point_for(field_path, storage)
        return None

    def form_id_for_instance(self, instance_id: int, conn: Connection | None = None) -> int | None:
        with connection(self._engine, conn) as c:
            return c.execute(
                text("SELECT form_id FROM form_instances WHERE id = :id"),
                {"id": instance_id},
            ).scalar()

    def load_instance(self, instance_id: int, conn: Connection | None = None) -> InstanceSnapshot | None:
        """Load an instance's header, stored values and storage id map."""
        with connection(self._engine, conn) as c:
            header = c.execute(
                text("""
                    SELECT id, form_id, form_version_id, study_id, subject_id
                    FROM form_instances WHERE id = :id
                """),
                {"id": instance_id},
            ).mappings().first()
            if header is None:
                return None
            rows = self._rows(instance_id, c)

        return InstanceSnapshot(
            instance_id=header["id"],
            form_id=header["form_id"],
            form_version_id=header["form_version_id"],
            study_id=header["study_id"],
            subject_id=header["subject_id"],
            form_data={row["field_name"]: row["value"] for row in rows},
            storage_id_map=self._map_rows(rows),
        )
