"""Trigger generator: forms in, migration and definition files out."""

from trigger_engine.generator.form import GeneratorForm, function_stub
from trigger_engine.generator.service import (
    GeneratorPreview,
    GeneratorResult,
    TriggerGenerator,
    next_version,
    render_definition,
    render_migration,
)

__all__ = [
    "GeneratorForm",
    "GeneratorPreview",
    "GeneratorResult",
    "TriggerGenerator",
    "function_stub",
    "next_version",
    "render_definition",
    "render_migration",
]
