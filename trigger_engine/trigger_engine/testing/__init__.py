"""Safe testing harness: syntax validation, dry runs and rolled-back execution."""

from trigger_engine.testing.dry_run import DryRun, DryRunResult, render_create_trigger
from trigger_engine.testing.safe_executor import FunctionTester, SafeExecutor
from trigger_engine.testing.syntax_validator import SyntaxValidator, ValidationReport, ValidationResult
from trigger_engine.testing.transactions import rollback_only

__all__ = [
    "DryRun",
    "DryRunResult",
    "FunctionTester",
    "SafeExecutor",
    "SyntaxValidator",
    "ValidationReport",
    "ValidationResult",
    "render_create_trigger",
    "rollback_only",
]
