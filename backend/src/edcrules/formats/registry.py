"""Load the format registry from its YAML source document.

The registry is read once at startup and shared read-only afterwards.
Rules store a semantic key (e.g. "email") and the pattern is looked up at
validation time, so fixing a pattern here fixes every rule that uses it.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_FORMATS_PATH = Path(__file__).parent / "format_types.yaml"

# Reserved key: the rule's own pattern applies instead of a registry entry
CUSTOM_REGEX = "custom_regex"


@dataclass(frozen=True)
class FormatType:
    """A registered format.

    Attributes:
        key: Semantic key stored on rules (e.g. "email")
        pattern: Regular expression applied with search semantics
        label: Human-readable name for rule builders
        example: A value that satisfies the pattern
    """

    key: str
    pattern: str
    label: str
    example: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "label": self.label,
            "example": self.example,
        }


class FormatRegistry:
    """Immutable mapping from format keys to FormatType entries."""

    def __init__(self, formats: Mapping[str, FormatType]):
        self._formats = dict(formats)

    @classmethod
    def load(cls, path: Path) -> "FormatRegistry":
        """Load formats from a YAML document with a top-level `formats` map."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        formats: dict[str, FormatType] = {}
        for key, entry in (data.get("formats") or {}).items():
            if not isinstance(entry, dict):
                logger.warning("Ignoring malformed format entry '%s' in %s", key, path)
                continue
            formats[key] = FormatType(
                key=key,
                pattern=str(entry.get("pattern") or ""),
                label=str(entry.get("label") or key),
                example=str(entry.get("example") or ""),
            )

        logger.debug("Loaded %d format types from %s", len(formats), path)
        return cls(formats)

    def get(self, key: str) -> FormatType | None:
        """Get a format by key."""
        return self._formats.get(key)

    def resolve_pattern(self, key: str | None) -> str | None:
        """Return the registered pattern for a key.

        None when the key is empty, unknown, custom_regex, or registered
        without a pattern. Callers then fall back to the rule's raw pattern.
        """
        if not key or key == CUSTOM_REGEX:
            return None
        entry = self._formats.get(key)
        if entry is None or not entry.pattern:
            return None
        return entry.pattern

    def list_all(self) -> list[FormatType]:
        """List all registered formats."""
        return list(self._formats.values())

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Export the registry in its source document shape."""
        return {key: fmt.to_dict() for key, fmt in self._formats.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._formats

    def __len__(self) -> int:
        return len(self._formats)


@lru_cache(maxsize=None)
def default_registry(path: Path = DEFAULT_FORMATS_PATH) -> FormatRegistry:
    """Load and cache the registry for a path (the packaged one by default)."""
    return FormatRegistry.load(path)
