"""Stored form values and their stable data point ids."""

from edcrules.storage.lookup import DataPointLookup, InstanceSnapshot

__all__ = ["DataPointLookup", "InstanceSnapshot"]
