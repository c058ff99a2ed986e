"""Validation rule and query-workflow engine for clinical data capture.

This package provides:
- Format registry: semantic format keys mapped to regex patterns
- Formula evaluator: spreadsheet-style formulas over submitted form values
- Rule evaluator and field matcher: apply per-field rules to form payloads
- Rule repository: merges custom, legacy item and native rules
- Query creation: deduplicated, routed review work items
- Validation orchestrator: full-form and single-field validation passes
"""

__version__ = "0.1.0"
