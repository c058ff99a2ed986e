"""Format registry: semantic format keys mapped to validation patterns."""

from edcrules.formats.registry import (
    CUSTOM_REGEX,
    DEFAULT_FORMATS_PATH,
    FormatRegistry,
    FormatType,
    default_registry,
)

__all__ = [
    "CUSTOM_REGEX",
    "DEFAULT_FORMATS_PATH",
    "FormatRegistry",
    "FormatType",
    "default_registry",
]
